"""Core data models for CloudFormation drift reconciliation."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from cfndrift.errors import PropertyDocumentError


class DetectionStatus(StrEnum):
    """Status of a drift detection operation."""

    IN_PROGRESS = "DETECTION_IN_PROGRESS"
    COMPLETE = "DETECTION_COMPLETE"
    FAILED = "DETECTION_FAILED"


class StackStatus(StrEnum):
    """Overall stack drift status."""

    DRIFTED = "DRIFTED"
    IN_SYNC = "IN_SYNC"
    NOT_CHECKED = "NOT_CHECKED"
    UNKNOWN = "UNKNOWN"


class ResourceStatus(StrEnum):
    """Individual resource drift status."""

    IN_SYNC = "IN_SYNC"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    NOT_CHECKED = "NOT_CHECKED"
    UNKNOWN = "UNKNOWN"
    UNSUPPORTED = "UNSUPPORTED"


class DifferenceType(StrEnum):
    """Property difference type."""

    ADD = "ADD"
    REMOVE = "REMOVE"
    NOT_EQUAL = "NOT_EQUAL"


class ChangeType(StrEnum):
    """Change type shown for a drift row."""

    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    NOT_CHECKED = "NOT_CHECKED"
    UNKNOWN = "UNKNOWN"
    UNMANAGED = "UNMANAGED"


class DetailStyle(StrEnum):
    """How a detail line should be emphasised by a renderer."""

    PLAIN = "plain"
    POSITIVE = "positive"
    WARNING = "warning"


@dataclass(frozen=True)
class PropertyDifference:
    """A single property difference between expected and actual configuration."""

    property_path: str
    expected_value: str
    actual_value: str
    difference_type: DifferenceType


class PropertyMap:
    """Read-only view over a decoded properties document.

    Getters return None when the key is missing or holds a value of another
    shape, so callers never have to guess at the JSON layout.
    """

    def __init__(self, data: dict[str, Any] | None = None):
        self._data = data or {}

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get_str(self, key: str) -> str | None:
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    def get_list(self, key: str) -> list | None:
        value = self._data.get(key)
        return value if isinstance(value, list) else None

    def get_map(self, key: str) -> "PropertyMap | None":
        value = self._data.get(key)
        return PropertyMap(value) if isinstance(value, dict) else None

    def tags(self) -> list[tuple[str, str]]:
        """Return the Tags property as ordered (key, value) pairs."""
        pairs = []
        for tag in self.get_list("Tags") or []:
            if not isinstance(tag, dict):
                continue
            key = tag.get("Key")
            if isinstance(key, str):
                value = tag.get("Value")
                pairs.append((key, "" if value is None else str(value)))
        return pairs


def _decode_document(raw: str | None, label: str, logical_id: str) -> PropertyMap:
    if not raw:
        return PropertyMap()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PropertyDocumentError(f"Invalid {label} properties for {logical_id}: {exc}") from exc
    if not isinstance(data, dict):
        raise PropertyDocumentError(f"Invalid {label} properties for {logical_id}: not an object")
    return PropertyMap(data)


@dataclass(frozen=True)
class StackResourceDrift:
    """Drift information for a single CloudFormation resource."""

    logical_id: str
    physical_id: str
    resource_type: str
    status: ResourceStatus
    property_differences: list[PropertyDifference] = field(default_factory=list)
    actual_properties: str | None = None
    expected_properties: str | None = None
    timestamp: datetime | None = None

    def expected(self) -> PropertyMap:
        return _decode_document(self.expected_properties, "expected", self.logical_id)

    def actual(self) -> PropertyMap:
        return _decode_document(self.actual_properties, "actual", self.logical_id)


@dataclass(frozen=True)
class DetectionRun:
    """Tracks an in-progress drift detection operation for polling."""

    detection_id: str
    stack_id: str
    stack_name: str
    status: DetectionStatus
    started_at: datetime
    stack_status: StackStatus | None = None
    drifted_resource_count: int | None = None
    status_reason: str | None = None


@dataclass(frozen=True)
class StackInfo:
    """The parts of a deployed stack the resolver needs."""

    stack_id: str
    stack_name: str
    parameters: dict[str, str]

    def pseudo_parameters(self) -> dict[str, str]:
        """Derive pseudo parameter values from the stack ARN."""
        # arn:<partition>:cloudformation:<region>:<account>:stack/<name>/<uuid>
        parts = self.stack_id.split(":")
        pseudo = {"AWS::StackName": self.stack_name, "AWS::StackId": self.stack_id}
        if len(parts) >= 5:
            partition, region, account = parts[1], parts[3], parts[4]
            pseudo["AWS::Partition"] = partition
            pseudo["AWS::Region"] = region
            pseudo["AWS::AccountId"] = account
            pseudo["AWS::URLSuffix"] = "amazonaws.com.cn" if partition == "aws-cn" else "amazonaws.com"
        return pseudo


@dataclass(frozen=True)
class PortRange:
    from_port: int
    to_port: int


@dataclass(frozen=True)
class IcmpTypeCode:
    type: int
    code: int


@dataclass(frozen=True)
class NaclEntry:
    """A network ACL entry, either live or declared in a template."""

    rule_number: int | None
    egress: bool
    protocol: str
    rule_action: str
    cidr_block: str | None = None
    ipv6_cidr_block: str | None = None
    port_range: PortRange | None = None
    icmp_type_code: IcmpTypeCode | None = None

    @classmethod
    def from_api(cls, entry: dict) -> "NaclEntry":
        port_range = None
        if "PortRange" in entry:
            port_range = PortRange(entry["PortRange"]["From"], entry["PortRange"]["To"])
        icmp = None
        if "IcmpTypeCode" in entry:
            icmp = IcmpTypeCode(entry["IcmpTypeCode"]["Type"], entry["IcmpTypeCode"]["Code"])
        return cls(
            rule_number=entry["RuleNumber"],
            egress=entry["Egress"],
            protocol=str(entry["Protocol"]),
            rule_action=entry["RuleAction"].lower(),
            cidr_block=entry.get("CidrBlock"),
            ipv6_cidr_block=entry.get("Ipv6CidrBlock"),
            port_range=port_range,
            icmp_type_code=icmp,
        )


@dataclass(frozen=True)
class Route:
    """A route table route, either live or declared in a template."""

    destination_cidr_block: str | None = None
    destination_ipv6_cidr_block: str | None = None
    destination_prefix_list_id: str | None = None
    carrier_gateway_id: str | None = None
    core_network_arn: str | None = None
    egress_only_internet_gateway_id: str | None = None
    gateway_id: str | None = None
    instance_id: str | None = None
    local_gateway_id: str | None = None
    nat_gateway_id: str | None = None
    network_interface_id: str | None = None
    transit_gateway_id: str | None = None
    vpc_peering_connection_id: str | None = None
    origin: str = "CreateRoute"
    state: str = "active"

    @classmethod
    def from_api(cls, route: dict) -> "Route":
        return cls(
            destination_cidr_block=route.get("DestinationCidrBlock"),
            destination_ipv6_cidr_block=route.get("DestinationIpv6CidrBlock"),
            destination_prefix_list_id=route.get("DestinationPrefixListId"),
            carrier_gateway_id=route.get("CarrierGatewayId"),
            core_network_arn=route.get("CoreNetworkArn"),
            egress_only_internet_gateway_id=route.get("EgressOnlyInternetGatewayId"),
            gateway_id=route.get("GatewayId"),
            instance_id=route.get("InstanceId"),
            local_gateway_id=route.get("LocalGatewayId"),
            nat_gateway_id=route.get("NatGatewayId"),
            network_interface_id=route.get("NetworkInterfaceId"),
            transit_gateway_id=route.get("TransitGatewayId"),
            vpc_peering_connection_id=route.get("VpcPeeringConnectionId"),
            origin=route.get("Origin", "CreateRoute"),
            state=route.get("State", "active"),
        )


@dataclass(frozen=True)
class TransitGatewayRoute:
    """A transit gateway route table route, either live or declared in a template."""

    destination_cidr_block: str | None = None
    prefix_list_id: str | None = None
    attachment_ids: tuple[str, ...] = ()
    type: str = "static"
    state: str = "active"

    @classmethod
    def from_api(cls, route: dict) -> "TransitGatewayRoute":
        attachments = tuple(
            a["TransitGatewayAttachmentId"]
            for a in route.get("TransitGatewayAttachments", [])
            if a.get("TransitGatewayAttachmentId")
        )
        return cls(
            destination_cidr_block=route.get("DestinationCidrBlock"),
            prefix_list_id=route.get("PrefixListId"),
            attachment_ids=attachments,
            type=route.get("Type", "static"),
            state=route.get("State", "active"),
        )


@dataclass(frozen=True)
class PrefixList:
    prefix_list_id: str
    owner_id: str
    name: str = ""


@dataclass(frozen=True, order=True)
class Detail:
    """One line of drift detail together with its display style."""

    text: str
    style: DetailStyle = DetailStyle.PLAIN

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class DriftRow:
    """A single normalized row of drift output."""

    logical_id: str
    resource_type: str
    change_type: str
    details: tuple[Detail, ...]

    def detail_lines(self) -> list[str]:
        return [d.text for d in self.details]


@dataclass(frozen=True)
class DriftReport:
    """Complete drift reconciliation results for a single stack."""

    stack_name: str
    title: str
    rows: list[DriftRow]
    timestamp: datetime

    @property
    def has_drift(self) -> bool:
        return bool(self.rows)
