"""Listing of every resource of a type in the account, for unmanaged resource detection."""

import boto3

from cfndrift.aws.session import build_session, client
from cfndrift.errors import DriftError

SSO_PERMISSION_SET = "AWS::SSO::PermissionSet"
SSO_ASSIGNMENT = "AWS::SSO::Assignment"


class ResourceLister:
    """Lists resources by CloudFormation type, keyed by physical ID.

    Cloud Control covers most types. SSO permission sets and assignments use
    the identifier format CloudFormation reports as their physical IDs, which
    Cloud Control does not produce.
    """

    def __init__(self, region: str | None = None, session: boto3.session.Session | None = None):
        session = session or build_session(region)
        self._cloudcontrol = client(session, "cloudcontrol")
        self._sso = client(session, "sso-admin")
        self._organizations = client(session, "organizations")

    def list_resources(self, resource_type: str) -> dict[str, str]:
        if resource_type == SSO_PERMISSION_SET:
            return {arn: SSO_PERMISSION_SET for arn in self._permission_sets()}
        if resource_type == SSO_ASSIGNMENT:
            return {arn: SSO_ASSIGNMENT for arn in self._assignments()}

        paginator = self._cloudcontrol.get_paginator("list_resources")
        resources = {}
        for page in paginator.paginate(TypeName=resource_type):
            for description in page.get("ResourceDescriptions", []):
                resources[description["Identifier"]] = resource_type
        return resources

    def _instance_arn(self) -> str:
        instances = self._sso.list_instances().get("Instances", [])
        if not instances:
            raise DriftError("No SSO instances found")
        return instances[0]["InstanceArn"]

    def _permission_set_arns(self, instance_arn: str) -> list[str]:
        paginator = self._sso.get_paginator("list_permission_sets")
        arns = []
        for page in paginator.paginate(InstanceArn=instance_arn):
            arns.extend(page.get("PermissionSets", []))
        return arns

    def _permission_sets(self) -> list[str]:
        instance_arn = self._instance_arn()
        return [f"{instance_arn}|{arn}" for arn in self._permission_set_arns(instance_arn)]

    def _account_ids(self) -> list[str]:
        paginator = self._organizations.get_paginator("list_accounts")
        accounts = []
        for page in paginator.paginate():
            accounts.extend(a["Id"] for a in page.get("Accounts", []))
        return accounts

    def _assignments(self) -> list[str]:
        instance_arn = self._instance_arn()
        accounts = self._account_ids()
        paginator = self._sso.get_paginator("list_account_assignments")
        identifiers = []
        for permission_set in self._permission_set_arns(instance_arn):
            for account in accounts:
                for page in paginator.paginate(
                    InstanceArn=instance_arn, AccountId=account, PermissionSetArn=permission_set
                ):
                    for a in page.get("AccountAssignments", []):
                        identifiers.append(
                            f"{instance_arn}|{a['AccountId']}|AWS_ACCOUNT|{permission_set}"
                            f"|{a['PrincipalType']}|{a['PrincipalId']}"
                        )
        return identifiers
