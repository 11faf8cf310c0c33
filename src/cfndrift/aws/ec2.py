"""Thin boto3 wrapper for the EC2 networking state that drift is compared against."""

import logging

import boto3

from cfndrift.aws.session import build_session, client
from cfndrift.models import NaclEntry, PrefixList, Route, TransitGatewayRoute

logger = logging.getLogger(__name__)


class Ec2Client:
    """Fetches live NACL entries, routes and prefix lists as cfndrift dataclasses."""

    def __init__(self, region: str | None = None, session: boto3.session.Session | None = None):
        self._client = client(session or build_session(region), "ec2")

    def get_nacl_entries(self, network_acl_id: str) -> list[NaclEntry]:
        resp = self._client.describe_network_acls(NetworkAclIds=[network_acl_id])
        entries = resp["NetworkAcls"][0].get("Entries", [])
        return [NaclEntry.from_api(e) for e in entries]

    def get_routes(self, route_table_id: str) -> list[Route]:
        resp = self._client.describe_route_tables(RouteTableIds=[route_table_id])
        routes = resp["RouteTables"][0].get("Routes", [])
        return [Route.from_api(r) for r in routes]

    def get_transit_gateway_routes(self, route_table_id: str) -> list[TransitGatewayRoute]:
        """Return active and blackhole routes of a transit gateway route table."""
        resp = self._client.search_transit_gateway_routes(
            TransitGatewayRouteTableId=route_table_id,
            Filters=[{"Name": "state", "Values": ["active", "blackhole"]}],
        )
        if resp.get("AdditionalRoutesAvailable"):
            logger.warning(
                "Transit gateway route table %s has more routes than returned; "
                "results are incomplete",
                route_table_id,
            )
        return [TransitGatewayRoute.from_api(r) for r in resp.get("Routes", [])]

    def get_managed_prefix_lists(self) -> list[PrefixList]:
        paginator = self._client.get_paginator("describe_managed_prefix_lists")
        prefix_lists = []
        for page in paginator.paginate():
            for pl in page.get("PrefixLists", []):
                prefix_lists.append(
                    PrefixList(
                        prefix_list_id=pl["PrefixListId"],
                        owner_id=pl.get("OwnerId", ""),
                        name=pl.get("PrefixListName", ""),
                    )
                )
        return prefix_lists
