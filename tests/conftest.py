"""Shared test fixtures."""

import json
from datetime import UTC, datetime

import boto3
import pytest
from moto import mock_aws

from cfndrift.models import (
    DetectionRun,
    DetectionStatus,
    ResourceStatus,
    StackResourceDrift,
)

STACK_ID = "arn:aws:cloudformation:us-east-1:123456789012:stack/net-stack/uuid"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Set dummy AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def cfn_client(aws_credentials):
    """Create a moto-mocked CloudFormation boto3 client."""
    with mock_aws():
        yield boto3.client("cloudformation", region_name="us-east-1")


SIMPLE_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "MyQueue": {
            "Type": "AWS::SQS::Queue",
            "Properties": {
                "QueueName": "my-test-queue"
            }
        }
    }
}"""

NACL_TEMPLATE = {
    "Parameters": {
        "Env": {"Type": "String", "Default": "dev"},
        "AllowedCidr": {"Type": "String", "Default": "10.0.0.0/24"},
    },
    "Conditions": {"IsProd": {"Fn::Equals": [{"Ref": "Env"}, "prod"]}},
    "Resources": {
        "MyNacl": {"Type": "AWS::EC2::NetworkAcl", "Properties": {"VpcId": "vpc-1"}},
        "InboundHttps": {
            "Type": "AWS::EC2::NetworkAclEntry",
            "Properties": {
                "NetworkAclId": {"Ref": "MyNacl"},
                "RuleNumber": 100,
                "Protocol": 6,
                "RuleAction": "allow",
                "Egress": False,
                "CidrBlock": {"Ref": "AllowedCidr"},
                "PortRange": {"From": 443, "To": 443},
            },
        },
        "OutboundAll": {
            "Type": "AWS::EC2::NetworkAclEntry",
            "Properties": {
                "NetworkAclId": {"Ref": "MyNacl"},
                "RuleNumber": 100,
                "Protocol": -1,
                "RuleAction": "allow",
                "Egress": True,
                "CidrBlock": "0.0.0.0/0",
            },
        },
        "ProdOnly": {
            "Type": "AWS::EC2::NetworkAclEntry",
            "Condition": "IsProd",
            "Properties": {
                "NetworkAclId": {"Ref": "MyNacl"},
                "RuleNumber": 200,
                "Protocol": 6,
                "RuleAction": "deny",
                "Egress": False,
                "CidrBlock": "192.168.0.0/16",
                "PortRange": {"From": 22, "To": 22},
            },
        },
    },
}

ROUTE_TEMPLATE_YAML = """
Parameters:
  NatGateway:
    Type: String
  UsePeering:
    Type: String
    Default: "false"
Conditions:
  PeeringEnabled: !Equals [!Ref UsePeering, "true"]
Resources:
  PrivateRouteTable:
    Type: AWS::EC2::RouteTable
    Properties:
      VpcId: vpc-1
  DefaultRoute:
    Type: AWS::EC2::Route
    Properties:
      RouteTableId: !Ref PrivateRouteTable
      DestinationCidrBlock: 0.0.0.0/0
      NatGatewayId: !Ref NatGateway
  PeeringRoute:
    Type: AWS::EC2::Route
    Condition: PeeringEnabled
    Properties:
      RouteTableId: !Ref PrivateRouteTable
      DestinationCidrBlock: 172.16.0.0/12
      VpcPeeringConnectionId: pcx-1
  ComputedRoute:
    Type: AWS::EC2::Route
    Properties:
      RouteTableId: !Ref PrivateRouteTable
      DestinationCidrBlock: !GetAtt Vpc.CidrBlock
      GatewayId: igw-1
"""

TGW_TEMPLATE = {
    "Resources": {
        "TgwRouteTable": {
            "Type": "AWS::EC2::TransitGatewayRouteTable",
            "Properties": {"TransitGatewayId": "tgw-1"},
        },
        "ToSpoke": {
            "Type": "AWS::EC2::TransitGatewayRoute",
            "Properties": {
                "TransitGatewayRouteTableId": {"Ref": "TgwRouteTable"},
                "DestinationCidrBlock": "10.1.0.0/16",
                "TransitGatewayAttachmentId": "tgw-attach-1",
            },
        },
        "Drop": {
            "Type": "AWS::EC2::TransitGatewayRoute",
            "Properties": {
                "TransitGatewayRouteTableId": {"Ref": "TgwRouteTable"},
                "DestinationCidrBlock": "10.9.0.0/16",
                "Blackhole": True,
            },
        },
    }
}


def make_drift(
    logical_id,
    resource_type,
    status=ResourceStatus.IN_SYNC,
    physical_id=None,
    differences=None,
    expected=None,
    actual=None,
):
    return StackResourceDrift(
        logical_id=logical_id,
        physical_id=physical_id or f"{logical_id.lower()}-id",
        resource_type=resource_type,
        status=status,
        property_differences=differences or [],
        expected_properties=json.dumps(expected) if expected is not None else None,
        actual_properties=json.dumps(actual) if actual is not None else None,
        timestamp=datetime(2026, 2, 25, 13, 30, 0, tzinfo=UTC),
    )


def make_detection_run(stack_name, status=DetectionStatus.IN_PROGRESS, **kwargs):
    return DetectionRun(
        detection_id=f"det-{stack_name}",
        stack_id=STACK_ID,
        stack_name=stack_name,
        status=status,
        started_at=datetime(2026, 2, 25, 13, 0, 0, tzinfo=UTC),
        **kwargs,
    )
