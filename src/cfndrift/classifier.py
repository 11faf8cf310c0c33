"""Classification of live against declared rules and shaping into drift rows."""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from cfndrift.config import IgnoreRules
from cfndrift.models import (
    ChangeType,
    Detail,
    DetailStyle,
    DifferenceType,
    DriftRow,
    PropertyDifference,
    ResourceStatus,
    StackResourceDrift,
)
from cfndrift.rules import RuleKind
from cfndrift.tags import TagReconciler, is_tag_path

logger = logging.getLogger(__name__)

DETAIL_SEPARATOR = "\n"


class Classification(StrEnum):
    UNMANAGED = "Unmanaged"
    REMOVED = "Removed"
    MODIFIED = "Modified"
    IN_SYNC = "InSync"


@dataclass(frozen=True)
class ClassifiedDiff:
    """The outcome of matching one rule key."""

    classification: Classification
    key: str
    live: Any = None
    declared: Any = None


def classify(
    live_rules: Iterable[Any],
    template_rules: dict[str, Any],
    comparator: Callable[[Any, Any], bool],
    *,
    key: Callable[[Any], str],
    excluded: Callable[[Any], bool] | None = None,
    implicit: Callable[[Any], bool] | None = None,
) -> list[ClassifiedDiff]:
    """Match live rules to template rules by key and classify each one.

    Excluded live rules take no part at all, and neither does their template
    counterpart. Implicit live rules without a counterpart are not reported
    as unmanaged. Template rules with an empty key could not be resolved and
    are never reported as removed.
    """
    remaining = dict(template_rules)
    results = []
    for rule in live_rules:
        rule_key = key(rule)
        if excluded is not None and excluded(rule):
            remaining.pop(rule_key, None)
            continue
        if rule_key and rule_key in remaining:
            declared = remaining.pop(rule_key)
            if comparator(rule, declared):
                results.append(ClassifiedDiff(Classification.IN_SYNC, rule_key, rule, declared))
            else:
                results.append(ClassifiedDiff(Classification.MODIFIED, rule_key, rule, declared))
        elif implicit is not None and implicit(rule):
            continue
        else:
            results.append(ClassifiedDiff(Classification.UNMANAGED, rule_key, live=rule))

    for rule_key, declared in remaining.items():
        if rule_key:
            results.append(ClassifiedDiff(Classification.REMOVED, rule_key, declared=declared))
    return results


def describe(diff: ClassifiedDiff, kind: RuleKind) -> Detail | None:
    noun = kind.singular.lower()
    if diff.classification == Classification.MODIFIED:
        return Detail(
            f"Expected: {kind.render(diff.declared)}{DETAIL_SEPARATOR}Actual: {kind.render(diff.live)}"
        )
    if diff.classification == Classification.UNMANAGED:
        return Detail(f"Unmanaged {noun}: {kind.render(diff.live)}", DetailStyle.POSITIVE)
    if diff.classification == Classification.REMOVED:
        return Detail(f"Removed {noun}: {kind.render(diff.declared)}", DetailStyle.WARNING)
    return None


def build_rows(
    logical_id: str,
    resource_type: str,
    change_type: str,
    details: list[Detail],
    *,
    separate: bool,
    separate_logical_id: str | None = None,
) -> list[DriftRow]:
    """Emit one row per detail, or one row holding all details sorted."""
    if not details:
        return []
    ordered = sorted(details)
    if separate:
        row_id = separate_logical_id or logical_id
        return [DriftRow(row_id, resource_type, change_type, (d,)) for d in ordered]
    return [DriftRow(logical_id, resource_type, change_type, tuple(ordered))]


def reconcile_rules(
    kind: RuleKind,
    logical_id: str,
    live_rules: Iterable[Any],
    template_rules: dict[str, Any],
    comparator: Callable[[Any, Any], bool],
    *,
    excluded: Callable[[Any], bool] | None = None,
    implicit: Callable[[Any], bool] | None = None,
    ignore: IgnoreRules | None = None,
    separate: bool = False,
) -> list[DriftRow]:
    """Classify the rules of one NACL or route table and return its drift rows."""
    diffs = classify(
        live_rules, template_rules, comparator, key=kind.key, excluded=excluded, implicit=implicit
    )
    details = []
    for diff in diffs:
        if diff.classification == Classification.IN_SYNC:
            continue
        if ignore and ignore.matches(kind.rule_type, logical_id, diff.key):
            logger.debug("Ignoring %s %s for %s", diff.classification, diff.key, logical_id)
            continue
        details.append(describe(diff, kind))

    return build_rows(
        kind.row_logical_id(logical_id, separate=False),
        kind.rule_type,
        ChangeType.MODIFIED,
        details,
        separate=separate,
        separate_logical_id=kind.row_logical_id(logical_id, separate=True),
    )


def _pretty(value: str | None) -> str:
    if value is None:
        return ""
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return value
    if isinstance(decoded, (dict, list)):
        return json.dumps(decoded, indent=2)
    return value


def _describe_difference(difference: PropertyDifference) -> Detail:
    diff_type = difference.difference_type
    path = difference.property_path
    if diff_type == DifferenceType.REMOVE:
        return Detail(f"{diff_type}: {path} - {_pretty(difference.expected_value)}", DetailStyle.WARNING)
    if diff_type == DifferenceType.ADD:
        return Detail(f"{diff_type}: {path} - {_pretty(difference.actual_value)}", DetailStyle.POSITIVE)
    return Detail(f"{diff_type}: {path} - {difference.expected_value} => {difference.actual_value}")


def describe_property_differences(drift: StackResourceDrift, ignore_tags: IgnoreRules) -> list[Detail]:
    """Describe CloudFormation's own property differences for a resource.

    Both property documents are decoded even when no tag differs, so a
    malformed document raises PropertyDocumentError instead of being rendered.
    """
    drift.expected()
    drift.actual()
    details = []
    if any(is_tag_path(d.property_path) for d in drift.property_differences):
        details.extend(TagReconciler(drift, ignore_tags).reconcile(drift.property_differences))
    for difference in drift.property_differences:
        if not is_tag_path(difference.property_path):
            details.append(_describe_difference(difference))

    if drift.status == ResourceStatus.DELETED and not drift.property_differences:
        details.append(Detail("Resource no longer exists", DetailStyle.WARNING))
    return details


def resource_rows(
    drift: StackResourceDrift, ignore_tags: IgnoreRules, *, separate: bool
) -> list[DriftRow]:
    """Rows for a resource as reported by native drift detection."""
    details = describe_property_differences(drift, ignore_tags)
    return build_rows(
        drift.logical_id, drift.resource_type, drift.status.value, details, separate=separate
    )
