"""Tests for rule classification and drift row shaping."""

import json

from cfndrift.classifier import (
    Classification,
    build_rows,
    classify,
    describe_property_differences,
    reconcile_rules,
    resource_rows,
)
from cfndrift.config import IgnoreRules
from cfndrift.models import (
    ChangeType,
    Detail,
    DetailStyle,
    DifferenceType,
    DriftRow,
    NaclEntry,
    PortRange,
    PropertyDifference,
    ResourceStatus,
    Route,
    TransitGatewayRoute,
)
from cfndrift.rules import (
    NACL,
    ROUTE,
    TGW_ROUTE,
    compare_nacl_entries,
    compare_routes,
    compare_tgw_routes,
    is_default_nacl_entry,
    is_excluded_prefix_list_route,
    is_local_route,
)
from cfndrift.template import TemplateResolver
from tests.conftest import make_drift

SCENARIO_TEMPLATE = {
    "Resources": {
        "MyNacl": {"Type": "AWS::EC2::NetworkAcl", "Properties": {"VpcId": "vpc-1"}},
        "Inbound": {
            "Type": "AWS::EC2::NetworkAclEntry",
            "Properties": {
                "NetworkAclId": {"Ref": "MyNacl"},
                "RuleNumber": 100,
                "Protocol": 6,
                "RuleAction": "allow",
                "Egress": False,
                "CidrBlock": "10.0.0.0/24",
                "PortRange": {"From": 0, "To": 0},
            },
        },
    }
}

SCENARIO_LIVE = [
    {
        "RuleNumber": 100,
        "Protocol": "6",
        "RuleAction": "allow",
        "Egress": False,
        "CidrBlock": "10.0.0.0/24",
        "PortRange": {"From": 0, "To": 0},
    },
    {
        "RuleNumber": 200,
        "Protocol": "6",
        "RuleAction": "allow",
        "Egress": True,
        "CidrBlock": "0.0.0.0/0",
        "PortRange": {"From": 443, "To": 443},
    },
    {"RuleNumber": 32767, "Protocol": "-1", "RuleAction": "deny", "Egress": False, "CidrBlock": "0.0.0.0/0"},
    {"RuleNumber": 32767, "Protocol": "-1", "RuleAction": "deny", "Egress": True, "CidrBlock": "0.0.0.0/0"},
]


def _entry(number, egress=False, action="allow"):
    return NaclEntry(number, egress, "6", action, "10.0.0.0/24", port_range=PortRange(443, 443))


def _nacl_rows(live, declared, **kwargs):
    return reconcile_rules(
        NACL,
        "MyNacl",
        live,
        declared,
        compare_nacl_entries,
        implicit=is_default_nacl_entry,
        **kwargs,
    )


def test_classify_all_outcomes():
    live = [_entry(100), _entry(200, action="deny"), _entry(300)]
    declared = {"I100": _entry(100), "I200": _entry(200), "I400": _entry(400)}
    diffs = classify(live, declared, compare_nacl_entries, key=NACL.key)
    outcome = {d.key: d.classification for d in diffs}
    assert outcome == {
        "I100": Classification.IN_SYNC,
        "I200": Classification.MODIFIED,
        "I300": Classification.UNMANAGED,
        "I400": Classification.REMOVED,
    }


def test_classify_drops_unresolved_template_rules():
    diffs = classify([], {"": _entry(100)}, compare_nacl_entries, key=NACL.key)
    assert diffs == []


def test_classify_excluded_rule_removes_template_counterpart():
    prefix_route = Route(destination_prefix_list_id="pl-1", gateway_id="vpce-1")
    diffs = classify(
        [prefix_route],
        {"pl-1": Route(destination_prefix_list_id="pl-1", gateway_id="vpce-2")},
        compare_routes,
        key=ROUTE.key,
        excluded=lambda r: is_excluded_prefix_list_route(r, False, ()),
    )
    assert diffs == []


def test_classify_implicit_rules_are_not_unmanaged():
    local = Route(destination_cidr_block="10.0.0.0/16", gateway_id="local", origin="CreateRouteTable")
    diffs = classify([local], {}, compare_routes, key=ROUTE.key, implicit=is_local_route)
    assert diffs == []


def test_nacl_end_to_end_scenario():
    declared = TemplateResolver(SCENARIO_TEMPLATE).nacl_entries("MyNacl")
    live = [NaclEntry.from_api(e) for e in SCENARIO_LIVE]

    rows = _nacl_rows(live, declared)

    assert rows == [
        DriftRow(
            logical_id="Entries for NACL MyNacl",
            resource_type="AWS::EC2::NetworkAclEntry",
            change_type=ChangeType.MODIFIED,
            details=(
                Detail(
                    "Unmanaged entry: egress #200 allow: tcp, 0.0.0.0/0 Port: 443",
                    DetailStyle.POSITIVE,
                ),
            ),
        )
    ]


def test_reconciliation_is_idempotent():
    declared = TemplateResolver(SCENARIO_TEMPLATE).nacl_entries("MyNacl")
    live = [NaclEntry.from_api(e) for e in SCENARIO_LIVE]
    assert _nacl_rows(live, declared) == _nacl_rows(live, declared)


def test_live_equal_to_template_has_no_rows():
    live = [_entry(100), _entry(200, egress=True)]
    declared = {NACL.key(e): e for e in live}
    assert _nacl_rows(live, declared) == []


def test_default_entry_only_live_is_suppressed():
    live = [NaclEntry(32767, True, "-1", "deny", "0.0.0.0/0")]
    assert _nacl_rows(live, {}) == []


def test_modified_and_removed_details():
    live = [_entry(100, action="deny")]
    declared = {"I100": _entry(100), "I110": _entry(110)}
    rows = _nacl_rows(live, declared)
    assert len(rows) == 1
    assert rows[0].details == (
        Detail(
            "Expected: ingress #100 allow: tcp, 10.0.0.0/24 Port: 443\n"
            "Actual: ingress #100 deny: tcp, 10.0.0.0/24 Port: 443"
        ),
        Detail("Removed entry: ingress #110 allow: tcp, 10.0.0.0/24 Port: 443", DetailStyle.WARNING),
    )


def test_separate_properties_emits_row_per_detail():
    live = [_entry(300)]
    declared = {"I110": _entry(110)}
    rows = _nacl_rows(live, declared, separate=True)
    assert [r.logical_id for r in rows] == ["Entry for NACL MyNacl", "Entry for NACL MyNacl"]
    assert rows[0].detail_lines() == ["Removed entry: ingress #110 allow: tcp, 10.0.0.0/24 Port: 443"]
    assert rows[1].detail_lines() == ["Unmanaged entry: ingress #300 allow: tcp, 10.0.0.0/24 Port: 443"]


def test_ignore_entries_suppress_matches():
    live = [_entry(300)]
    ignore = IgnoreRules.parse(["AWS::EC2::NetworkAclEntry:I300"])
    assert _nacl_rows(live, {}, ignore=ignore) == []
    other_parent = IgnoreRules.parse(["OtherNacl:I300"])
    assert len(_nacl_rows(live, {}, ignore=other_parent)) == 1


def _route_rows(live, declared, ignore, logical_id="PrivateRouteTable"):
    return reconcile_rules(ROUTE, logical_id, live, declared, compare_routes, ignore=ignore)


def test_route_ignore_entry_is_scoped_to_type_and_destination():
    ignore = IgnoreRules.parse(["AWS::EC2::Route:10.0.0.0/16"])
    declared = {
        "10.0.0.0/16": Route(destination_cidr_block="10.0.0.0/16", gateway_id="igw-1"),
        "10.1.0.0/16": Route(destination_cidr_block="10.1.0.0/16", gateway_id="igw-1"),
    }
    live = [
        Route(destination_cidr_block="10.0.0.0/16", gateway_id="igw-2"),
        Route(destination_cidr_block="10.1.0.0/16", gateway_id="igw-2"),
    ]

    rows = _route_rows(live, declared, ignore)

    assert rows[0].detail_lines() == ["Expected: 10.1.0.0/16: igw-1\nActual: 10.1.0.0/16: igw-2"]
    assert _route_rows(live[:1], declared, ignore)[0].detail_lines() == [
        "Removed route: 10.1.0.0/16: igw-1"
    ]


def test_route_ignore_entry_does_not_apply_to_other_types():
    ignore = IgnoreRules.parse(["AWS::EC2::Route:10.0.0.0/16"])
    declared = {
        "10.0.0.0/16": TransitGatewayRoute("10.0.0.0/16", attachment_ids=("tgw-attach-1",))
    }
    live = [TransitGatewayRoute("10.0.0.0/16", attachment_ids=("tgw-attach-2",))]

    rows = reconcile_rules(
        TGW_ROUTE, "TgwRouteTable", live, declared, compare_tgw_routes, ignore=ignore
    )

    assert rows[0].detail_lines() == [
        "Expected: 10.0.0.0/16: tgw-attach-1\nActual: 10.0.0.0/16: tgw-attach-2"
    ]


def test_tgw_routes_modified_and_removed():
    declared = {
        "10.0.0.0/16": TransitGatewayRoute("10.0.0.0/16", attachment_ids=("tgw-attach-1",)),
        "10.9.0.0/16": TransitGatewayRoute("10.9.0.0/16", state="blackhole"),
    }
    live = [TransitGatewayRoute("10.0.0.0/16", state="blackhole")]

    diffs = classify(live, declared, compare_tgw_routes, key=TGW_ROUTE.key)

    assert [(d.classification, d.key) for d in diffs] == [
        (Classification.MODIFIED, "10.0.0.0/16"),
        (Classification.REMOVED, "10.9.0.0/16"),
    ]


def test_build_rows_without_details():
    assert build_rows("X", "AWS::S3::Bucket", ChangeType.MODIFIED, [], separate=False) == []


def test_describe_property_differences_formats():
    drift = make_drift(
        "MyQueue",
        "AWS::SQS::Queue",
        ResourceStatus.MODIFIED,
        differences=[
            PropertyDifference("/DelaySeconds", "0", "5", DifferenceType.NOT_EQUAL),
            PropertyDifference("/RedrivePolicy", "", json.dumps({"maxReceiveCount": 3}), DifferenceType.ADD),
            PropertyDifference("/KmsMasterKeyId", "alias/key", "", DifferenceType.REMOVE),
        ],
    )
    details = describe_property_differences(drift, IgnoreRules())
    assert details == [
        Detail("NOT_EQUAL: /DelaySeconds - 0 => 5"),
        Detail('ADD: /RedrivePolicy - {\n  "maxReceiveCount": 3\n}', DetailStyle.POSITIVE),
        Detail("REMOVE: /KmsMasterKeyId - alias/key", DetailStyle.WARNING),
    ]


def test_deleted_resource_without_differences():
    drift = make_drift("MyQueue", "AWS::SQS::Queue", ResourceStatus.DELETED)
    rows = resource_rows(drift, IgnoreRules(), separate=False)
    assert rows == [
        DriftRow(
            "MyQueue",
            "AWS::SQS::Queue",
            "DELETED",
            (Detail("Resource no longer exists", DetailStyle.WARNING),),
        )
    ]


def test_resource_rows_merge_tag_and_property_details():
    drift = make_drift(
        "Bucket",
        "AWS::S3::Bucket",
        ResourceStatus.MODIFIED,
        differences=[
            PropertyDifference("/Tags/0/Value", "dev", "prod", DifferenceType.NOT_EQUAL),
            PropertyDifference("/VersioningConfiguration/Status", "Enabled", "Suspended", DifferenceType.NOT_EQUAL),
        ],
        expected={"Tags": [{"Key": "Env", "Value": "dev"}]},
        actual={"Tags": [{"Key": "Env", "Value": "prod"}]},
    )
    rows = resource_rows(drift, IgnoreRules(), separate=False)
    assert len(rows) == 1
    assert rows[0].detail_lines() == [
        "NOT_EQUAL: /VersioningConfiguration/Status - Enabled => Suspended",
        "NOT_EQUAL: Env - dev => prod",
    ]
