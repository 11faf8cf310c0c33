"""Canonical keys, comparators and renderings for NACL entries and routes."""

from collections.abc import Callable, Collection
from dataclasses import dataclass
from typing import Any

from cfndrift.models import NaclEntry, Route, TransitGatewayRoute

# Every NACL ends with an AWS-generated deny-all entry in both directions.
NACL_DEFAULT_RULE_NUMBER = 32767

LOCAL_ROUTE_ORIGIN = "CreateRouteTable"
BLACKHOLE = "blackhole"
TGW_PROPAGATED = "propagated"
TGW_COMPARED_STATES = frozenset({"active", BLACKHOLE})

PROTOCOL_NAMES = {"-1": "all", "1": "icmp", "6": "tcp", "17": "udp", "58": "icmpv6"}

ROUTE_TARGET_FIELDS = (
    "carrier_gateway_id",
    "core_network_arn",
    "egress_only_internet_gateway_id",
    "gateway_id",
    "instance_id",
    "local_gateway_id",
    "nat_gateway_id",
    "network_interface_id",
    "transit_gateway_id",
    "vpc_peering_connection_id",
)


def nacl_key(egress: bool, rule_number: int | None) -> str:
    """Identity of a NACL entry: direction plus rule number, e.g. I100 or E200."""
    if rule_number is None:
        return ""
    return f"{'E' if egress else 'I'}{rule_number}"


def route_key(destination: str | None) -> str:
    return destination or ""


def tgw_route_key(destination: str | None) -> str:
    return destination or ""


def route_destination(route: Route) -> str | None:
    """Either the IPv4 CIDR, the prefix list ID or the IPv6 CIDR, in that order."""
    return (
        route.destination_cidr_block
        or route.destination_prefix_list_id
        or route.destination_ipv6_cidr_block
    )


def tgw_route_destination(route: TransitGatewayRoute) -> str | None:
    return route.destination_cidr_block or route.prefix_list_id


def route_target(route: Route) -> str:
    for name in ROUTE_TARGET_FIELDS:
        value = getattr(route, name)
        if value:
            return value
    return ""


def compare_nacl_entries(live: NaclEntry, declared: NaclEntry) -> bool:
    return (
        live.egress == declared.egress
        and live.protocol == declared.protocol
        and live.rule_action == declared.rule_action
        and live.cidr_block == declared.cidr_block
        and live.ipv6_cidr_block == declared.ipv6_cidr_block
        and live.port_range == declared.port_range
        and live.icmp_type_code == declared.icmp_type_code
    )


def compare_routes(live: Route, declared: Route, blackhole_ignore: Collection[str] = ()) -> bool:
    """Compare destination, target and state of two routes.

    A live blackhole route whose target is listed in blackhole_ignore counts
    as equal to an active declared route.
    """
    if route_destination(live) != route_destination(declared):
        return False
    for name in ROUTE_TARGET_FIELDS:
        # EC2 reports the instance's ENI alongside an instance target.
        if name == "network_interface_id" and declared.instance_id and not declared.network_interface_id:
            continue
        if getattr(live, name) != getattr(declared, name):
            return False
    if live.state != declared.state:
        return live.state == BLACKHOLE and route_target(live) in blackhole_ignore
    return True


def compare_tgw_routes(
    live: TransitGatewayRoute,
    declared: TransitGatewayRoute,
    blackhole_ignore: Collection[str] = (),
) -> bool:
    if tgw_route_destination(live) != tgw_route_destination(declared):
        return False
    # A declared blackhole has no attachment to compare against.
    if live.state == BLACKHOLE and declared.state == BLACKHOLE:
        return True
    if sorted(live.attachment_ids) != sorted(declared.attachment_ids):
        return False
    if live.state != declared.state:
        return live.state == BLACKHOLE and any(a in blackhole_ignore for a in live.attachment_ids)
    return True


def is_default_nacl_entry(entry: NaclEntry) -> bool:
    return entry.rule_number == NACL_DEFAULT_RULE_NUMBER


def is_local_route(route: Route) -> bool:
    return route.origin == LOCAL_ROUTE_ORIGIN


def is_excluded_prefix_list_route(
    route: Route, verbose: bool, aws_prefix_lists: Collection[str]
) -> bool:
    """Prefix list routes are hidden unless verbose; AWS-owned lists always are."""
    prefix_list = route.destination_prefix_list_id
    if prefix_list is None:
        return False
    return not verbose or prefix_list in aws_prefix_lists


def is_excluded_tgw_route(route: TransitGatewayRoute) -> bool:
    return route.type == TGW_PROPAGATED or route.state not in TGW_COMPARED_STATES


def nacl_entry_to_string(entry: NaclEntry) -> str:
    direction = "egress" if entry.egress else "ingress"
    ports = "Ports: All"
    if entry.port_range is not None:
        if entry.port_range.from_port == entry.port_range.to_port:
            ports = f"Port: {entry.port_range.from_port}"
        else:
            ports = f"Ports: {entry.port_range.from_port}-{entry.port_range.to_port}"
    if entry.icmp_type_code is not None:
        if entry.icmp_type_code.type == -1:
            ports = "ICMP: All"
        else:
            ports = f"ICMP: {entry.icmp_type_code.type}-{entry.icmp_type_code.code}"
    cidr = entry.ipv6_cidr_block or entry.cidr_block or ""
    protocol = PROTOCOL_NAMES.get(entry.protocol, entry.protocol)
    return f"{direction} #{entry.rule_number} {entry.rule_action}: {protocol}, {cidr} {ports}"


def route_to_string(route: Route) -> str:
    text = f"{route_destination(route) or ''}: {route_target(route)}"
    if route.state == BLACKHOLE:
        text += f" ({BLACKHOLE})"
    return text


def tgw_route_to_string(route: TransitGatewayRoute) -> str:
    text = tgw_route_destination(route) or ""
    if route.attachment_ids:
        text += ": " + ", ".join(sorted(route.attachment_ids))
    if route.state == BLACKHOLE:
        text += f" ({BLACKHOLE})"
    return text


@dataclass(frozen=True)
class RuleKind:
    """Everything that differs between the three reconciled rule kinds."""

    name: str
    parent_type: str
    rule_type: str
    parent_property: str
    label: str
    singular: str
    plural: str
    key: Callable[[Any], str]
    render: Callable[[Any], str]

    def row_logical_id(self, logical_id: str, separate: bool) -> str:
        noun = self.singular if separate else self.plural
        return f"{noun} for {self.label} {logical_id}"


NACL = RuleKind(
    name="nacl",
    parent_type="AWS::EC2::NetworkAcl",
    rule_type="AWS::EC2::NetworkAclEntry",
    parent_property="NetworkAclId",
    label="NACL",
    singular="Entry",
    plural="Entries",
    key=lambda e: nacl_key(e.egress, e.rule_number),
    render=nacl_entry_to_string,
)

ROUTE = RuleKind(
    name="route",
    parent_type="AWS::EC2::RouteTable",
    rule_type="AWS::EC2::Route",
    parent_property="RouteTableId",
    label="RouteTable",
    singular="Route",
    plural="Routes",
    key=lambda r: route_key(route_destination(r)),
    render=route_to_string,
)

TGW_ROUTE = RuleKind(
    name="tgw-route",
    parent_type="AWS::EC2::TransitGatewayRouteTable",
    rule_type="AWS::EC2::TransitGatewayRoute",
    parent_property="TransitGatewayRouteTableId",
    label="TransitGatewayRouteTable",
    singular="Route",
    plural="Routes",
    key=lambda r: tgw_route_key(tgw_route_destination(r)),
    render=tgw_route_to_string,
)

RULE_KINDS = {kind.parent_type: kind for kind in (NACL, ROUTE, TGW_ROUTE)}
