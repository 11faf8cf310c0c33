"""Thin boto3 wrapper for CloudFormation drift detection API calls."""

from datetime import UTC, datetime

import boto3

from cfndrift.aws.session import build_session, client
from cfndrift.models import (
    DetectionRun,
    DetectionStatus,
    DifferenceType,
    PropertyDifference,
    ResourceStatus,
    StackInfo,
    StackResourceDrift,
    StackStatus,
)


class CloudFormationClient:
    """Wraps boto3 CloudFormation calls and returns cfndrift dataclasses."""

    def __init__(self, region: str | None = None, session: boto3.session.Session | None = None):
        self._client = client(session or build_session(region), "cloudformation")

    def detect_drift(self, stack_name: str) -> DetectionRun:
        """Trigger drift detection for a stack. Returns a DetectionRun for polling."""
        response = self._client.detect_stack_drift(StackName=stack_name)
        detection_id = response["StackDriftDetectionId"]

        desc = self._client.describe_stacks(StackName=stack_name)
        stack_id = desc["Stacks"][0]["StackId"]

        return DetectionRun(
            detection_id=detection_id,
            stack_id=stack_id,
            stack_name=stack_name,
            status=DetectionStatus.IN_PROGRESS,
            started_at=datetime.now(UTC),
        )

    def poll_detection(self, detection_id: str, stack_name: str) -> DetectionRun:
        """Check status of a drift detection operation."""
        resp = self._client.describe_stack_drift_detection_status(
            StackDriftDetectionId=detection_id
        )

        status = DetectionStatus(resp["DetectionStatus"])
        stack_status = None
        drifted_count = None
        status_reason = None

        if status == DetectionStatus.COMPLETE:
            stack_status = StackStatus(resp["StackDriftStatus"])
            drifted_count = resp.get("DriftedStackResourceCount", 0)
        elif status == DetectionStatus.FAILED:
            status_reason = resp.get("DetectionStatusReason")

        return DetectionRun(
            detection_id=detection_id,
            stack_id=resp["StackId"],
            stack_name=stack_name,
            status=status,
            started_at=resp["Timestamp"],
            stack_status=stack_status,
            drifted_resource_count=drifted_count,
            status_reason=status_reason,
        )

    def get_resource_drifts(self, stack_name: str) -> list[StackResourceDrift]:
        """Fetch resource-level drift details, including both property documents."""
        results = []
        next_token = None

        while True:
            kwargs: dict = {"StackName": stack_name}
            if next_token:
                kwargs["NextToken"] = next_token

            resp = self._client.describe_stack_resource_drifts(**kwargs)

            for resource in resp["StackResourceDrifts"]:
                differences = [
                    PropertyDifference(
                        property_path=pd["PropertyPath"],
                        expected_value=pd.get("ExpectedValue", ""),
                        actual_value=pd.get("ActualValue", ""),
                        difference_type=DifferenceType(pd["DifferenceType"]),
                    )
                    for pd in resource.get("PropertyDifferences", [])
                ]

                results.append(
                    StackResourceDrift(
                        logical_id=resource["LogicalResourceId"],
                        physical_id=resource.get("PhysicalResourceId", ""),
                        resource_type=resource["ResourceType"],
                        status=ResourceStatus(resource["StackResourceDriftStatus"]),
                        property_differences=differences,
                        actual_properties=resource.get("ActualProperties"),
                        expected_properties=resource.get("ExpectedProperties"),
                        timestamp=resource.get("Timestamp"),
                    )
                )

            next_token = resp.get("NextToken")
            if not next_token:
                break

        return results

    def describe_stack(self, stack_name: str) -> StackInfo:
        """Return the stack ID and its deployed parameter values."""
        stack = self._client.describe_stacks(StackName=stack_name)["Stacks"][0]
        parameters = {
            p["ParameterKey"]: p.get("ResolvedValue", p.get("ParameterValue", ""))
            for p in stack.get("Parameters", [])
        }
        return StackInfo(
            stack_id=stack["StackId"],
            stack_name=stack["StackName"],
            parameters=parameters,
        )

    def get_template_body(self, stack_name: str) -> str | dict:
        """Return the processed template; boto3 decodes JSON bodies into a dict."""
        resp = self._client.get_template(StackName=stack_name, TemplateStage="Processed")
        return resp["TemplateBody"]

    def list_exports(self) -> dict[str, str]:
        """Return all stack exports in the region by export name."""
        paginator = self._client.get_paginator("list_exports")
        exports = {}
        for page in paginator.paginate():
            for export in page.get("Exports", []):
                exports[export["Name"]] = export["Value"]
        return exports
