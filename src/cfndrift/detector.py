"""Orchestrates drift reconciliation for a single CloudFormation stack."""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from functools import partial
from typing import Any

from cfndrift.aws.client import CloudFormationClient
from cfndrift.aws.ec2 import Ec2Client
from cfndrift.aws.resources import ResourceLister
from cfndrift.classifier import reconcile_rules, resource_rows
from cfndrift.config import DriftConfig
from cfndrift.errors import DetectionFailedError, DetectionTimeoutError, DriftTimeoutError
from cfndrift.models import (
    DetectionStatus,
    DriftReport,
    DriftRow,
    ResourceStatus,
    StackResourceDrift,
)
from cfndrift.rules import (
    NACL,
    ROUTE,
    RULE_KINDS,
    TGW_ROUTE,
    RuleKind,
    compare_nacl_entries,
    compare_routes,
    compare_tgw_routes,
    is_default_nacl_entry,
    is_excluded_prefix_list_route,
    is_excluded_tgw_route,
    is_local_route,
)
from cfndrift.template import TemplateResolver
from cfndrift.unmanaged import ManagedResourceIndex, detect_unmanaged

logger = logging.getLogger(__name__)

AWS_OWNER = "AWS"


class OrchestratorState(StrEnum):
    IDLE = "IDLE"
    DETECTION_TRIGGERED = "DETECTION_TRIGGERED"
    DETECTION_POLLING = "DETECTION_POLLING"
    RESULTS_FETCHED = "RESULTS_FETCHED"
    PER_RESOURCE_RECONCILIATION = "PER_RESOURCE_RECONCILIATION"
    UNMANAGED_SCAN = "UNMANAGED_SCAN"
    DONE = "DONE"
    FAILED = "FAILED"


class _RowCollector:
    """Append-only row sink shared by reconciliation workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: list[DriftRow] = []

    def extend(self, rows: list[DriftRow]) -> None:
        with self._lock:
            self._rows.extend(rows)

    def sorted_rows(self) -> list[DriftRow]:
        with self._lock:
            return sorted(self._rows, key=lambda r: r.logical_id)


@dataclass(frozen=True)
class _RulePolicy:
    """How live rules of one kind are fetched, compared and filtered."""

    fetch: Callable[[str], list[Any]]
    comparator: Callable[[Any, Any], bool]
    excluded: Callable[[Any], bool] | None = None
    implicit: Callable[[Any], bool] | None = None


@dataclass
class _ParentTask:
    drift: StackResourceDrift
    kind: RuleKind
    declared: dict[str, Any] = field(default_factory=dict)


class DriftOrchestrator:
    """Runs native drift detection for a stack and reconciles what it cannot see."""

    def __init__(
        self,
        cfn: CloudFormationClient,
        ec2: Ec2Client,
        resources: ResourceLister,
        config: DriftConfig,
        poll_interval: float = 5.0,
        max_poll_attempts: int = 120,
        max_concurrent: int = 1,
        timeout: float | None = None,
    ):
        self._cfn = cfn
        self._ec2 = ec2
        self._resources = resources
        self._config = config
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._max_concurrent = max(1, max_concurrent)
        self._timeout = timeout
        self._deadline: float | None = None
        self.state = OrchestratorState.IDLE

    def run(self, stack_name: str) -> DriftReport:
        """Return the drift report for a stack. Any failure aborts the whole run."""
        self._deadline = time.monotonic() + self._timeout if self._timeout else None
        try:
            report = self._run(stack_name)
        except Exception:
            self._transition(OrchestratorState.FAILED, stack_name)
            raise
        self._transition(OrchestratorState.DONE, stack_name)
        return report

    def _transition(self, state: OrchestratorState, stack_name: str) -> None:
        logger.info("%s: %s -> %s", stack_name, self.state, state)
        self.state = state

    def _check_deadline(self, step: str) -> None:
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise DriftTimeoutError(f"Drift run exceeded {self._timeout}s before {step}")

    def _run(self, stack_name: str) -> DriftReport:
        if not self._config.results_only:
            self._detect(stack_name)

        self._check_deadline("fetching resource drifts")
        drifts = self._cfn.get_resource_drifts(stack_name)
        self._transition(OrchestratorState.RESULTS_FETCHED, stack_name)

        collector = _RowCollector()
        for drift in drifts:
            if drift.status != ResourceStatus.IN_SYNC:
                collector.extend(
                    resource_rows(
                        drift, self._config.ignore_tags, separate=self._config.separate_properties
                    )
                )

        self._transition(OrchestratorState.PER_RESOURCE_RECONCILIATION, stack_name)
        managed = ManagedResourceIndex.from_drifts(drifts)
        tasks = [
            _ParentTask(d, RULE_KINDS[d.resource_type])
            for d in drifts
            if d.resource_type in RULE_KINDS and d.physical_id
        ]
        if tasks:
            self._reconcile_parents(stack_name, tasks, managed, collector)

        self._transition(OrchestratorState.UNMANAGED_SCAN, stack_name)
        for resource_type in self._config.detect_unmanaged_resources:
            self._check_deadline(f"listing {resource_type}")
            collector.extend(
                detect_unmanaged(
                    self._resources.list_resources(resource_type),
                    managed,
                    self._config.ignore_unmanaged_resources,
                )
            )

        return DriftReport(
            stack_name=stack_name,
            title=f"Drift results for stack {stack_name}",
            rows=collector.sorted_rows(),
            timestamp=datetime.now(UTC),
        )

    def _detect(self, stack_name: str) -> None:
        self._check_deadline("triggering detection")
        run = self._cfn.detect_drift(stack_name)
        self._transition(OrchestratorState.DETECTION_TRIGGERED, stack_name)
        self._transition(OrchestratorState.DETECTION_POLLING, stack_name)

        for _ in range(self._max_poll_attempts):
            self._check_deadline("polling detection status")
            run = self._cfn.poll_detection(run.detection_id, stack_name)

            if run.status == DetectionStatus.COMPLETE:
                logger.info(
                    "%s: detection complete, %s drifted resources",
                    stack_name,
                    run.drifted_resource_count,
                )
                return
            if run.status == DetectionStatus.FAILED:
                raise DetectionFailedError(stack_name, run.status_reason)

            if self._poll_interval > 0:
                time.sleep(self._poll_interval)

        logger.warning("Drift detection timed out for %s", stack_name)
        raise DetectionTimeoutError(
            f"Drift detection for {stack_name} did not complete after "
            f"{self._max_poll_attempts} polls"
        )

    def _reconcile_parents(
        self,
        stack_name: str,
        tasks: list[_ParentTask],
        managed: ManagedResourceIndex,
        collector: _RowCollector,
    ) -> None:
        self._check_deadline("fetching the template")
        stack = self._cfn.describe_stack(stack_name)
        template = self._cfn.get_template_body(stack_name)
        exports = self._cfn.list_exports()
        logical_to_physical = managed.logical_to_physical()
        resolver = TemplateResolver(
            template,
            stack.parameters,
            logical_to_physical,
            pseudo_parameters=stack.pseudo_parameters(),
            exports=exports,
        )

        aws_prefix_lists: frozenset[str] = frozenset()
        if any(t.kind is ROUTE for t in tasks):
            self._check_deadline("fetching prefix lists")
            aws_prefix_lists = frozenset(
                pl.prefix_list_id
                for pl in self._ec2.get_managed_prefix_lists()
                if pl.owner_id == AWS_OWNER
            )
        policies = self._policies(aws_prefix_lists, logical_to_physical)

        # The resolver memoises conditions, so declared rules are resolved up front.
        for task in tasks:
            task.declared = resolver.rules_for(task.kind, task.drift.logical_id)

        if self._max_concurrent == 1 or len(tasks) == 1:
            for task in tasks:
                collector.extend(self._reconcile_parent(task, policies[task.kind.name]))
            return

        with ThreadPoolExecutor(max_workers=self._max_concurrent) as executor:
            futures = {
                executor.submit(self._reconcile_parent, t, policies[t.kind.name]): t for t in tasks
            }
            try:
                for future in as_completed(futures):
                    collector.extend(future.result())
            except Exception:
                for future in futures:
                    future.cancel()
                raise

    def _policies(
        self, aws_prefix_lists: frozenset[str], logical_to_physical: dict[str, str]
    ) -> dict[str, _RulePolicy]:
        # Blackhole ignores may name stack resources by logical ID.
        blackholes = self._config.ignore_blackholes | {
            logical_to_physical[i] for i in self._config.ignore_blackholes if i in logical_to_physical
        }
        return {
            NACL.name: _RulePolicy(
                fetch=self._ec2.get_nacl_entries,
                comparator=compare_nacl_entries,
                implicit=is_default_nacl_entry,
            ),
            ROUTE.name: _RulePolicy(
                fetch=self._ec2.get_routes,
                comparator=partial(compare_routes, blackhole_ignore=blackholes),
                excluded=partial(
                    is_excluded_prefix_list_route,
                    verbose=self._config.verbose,
                    aws_prefix_lists=aws_prefix_lists,
                ),
                implicit=is_local_route,
            ),
            TGW_ROUTE.name: _RulePolicy(
                fetch=self._ec2.get_transit_gateway_routes,
                comparator=partial(compare_tgw_routes, blackhole_ignore=blackholes),
                excluded=is_excluded_tgw_route,
            ),
        }

    def _reconcile_parent(self, task: _ParentTask, policy: _RulePolicy) -> list[DriftRow]:
        drift = task.drift
        self._check_deadline(f"fetching rules of {drift.logical_id}")
        live = policy.fetch(drift.physical_id)
        logger.debug(
            "%s: %d live and %d declared %s rules",
            drift.logical_id,
            len(live),
            len(task.declared),
            task.kind.name,
        )
        return reconcile_rules(
            task.kind,
            drift.logical_id,
            live,
            task.declared,
            policy.comparator,
            excluded=policy.excluded,
            implicit=policy.implicit,
            ignore=self._config.ignore_entries,
            separate=self._config.separate_properties,
        )
