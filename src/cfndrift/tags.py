"""Reconciliation of tag differences reported by CloudFormation drift detection.

CloudFormation compares tag lists position by position, so reordering tags
shows up as a series of Key and Value changes. The full expected and actual
tag lists are consulted first so that pure reordering is reported as a
sequence change rather than as modified values.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from cfndrift.config import IgnoreRules
from cfndrift.models import (
    Detail,
    DetailStyle,
    DifferenceType,
    PropertyDifference,
    StackResourceDrift,
)

logger = logging.getLogger(__name__)

TAGS = "Tags"


def is_tag_path(path: str) -> bool:
    return TAGS in path.split("/")


def decode_value(value: str | None) -> Any:
    """Decode a JSON-encoded difference value, returning the raw text if it is not JSON."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


@dataclass(frozen=True)
class TagValues:
    expected: str | None
    actual: str | None


def build_tag_map(
    expected: list[tuple[str, str]], actual: list[tuple[str, str]]
) -> dict[str, TagValues]:
    """Map every tag key to its expected and actual value."""
    expected_values = dict(expected)
    actual_values = dict(actual)
    keys = list(expected_values) + [k for k in actual_values if k not in expected_values]
    return {k: TagValues(expected_values.get(k), actual_values.get(k)) for k in keys}


def _tag_position(path: str) -> tuple[str | None, str | None]:
    parts = path.strip("/").split("/")
    index = parts.index(TAGS)
    position = parts[index + 1] if len(parts) > index + 1 else None
    attribute = parts[index + 2] if len(parts) > index + 2 else None
    return position, attribute


class TagReconciler:
    """Turns the tag differences of one resource into detail lines."""

    def __init__(self, drift: StackResourceDrift, ignore: IgnoreRules):
        self._drift = drift
        self._ignore = ignore
        self._expected_tags = drift.expected().tags()
        self._actual_tags = drift.actual().tags()
        self._tag_map = build_tag_map(self._expected_tags, self._actual_tags)

    def _ignored(self, *keys: str | None) -> bool:
        for key in keys:
            if key and self._ignore.matches(self._drift.resource_type, self._drift.logical_id, key):
                logger.debug("Ignoring tag %s on %s", key, self._drift.logical_id)
                return True
        return False

    def _key_at(self, tags: list[tuple[str, str]], position: str | None) -> str | None:
        if position is None or not position.isdigit():
            return None
        index = int(position)
        return tags[index][0] if index < len(tags) else None

    def _is_sequence_only(self, key: str | None) -> bool:
        values = self._tag_map.get(key) if key else None
        return values is not None and values.expected == values.actual

    def reconcile(self, differences: list[PropertyDifference]) -> list[Detail]:
        """Describe the tag differences, dropping ignored tags."""
        tag_differences = [d for d in differences if is_tag_path(d.property_path)]

        # Positions whose key only moved; their Value differences are noise.
        handled = set()
        for difference in tag_differences:
            position, attribute = _tag_position(difference.property_path)
            if difference.difference_type == DifferenceType.NOT_EQUAL and attribute == "Key":
                if self._is_sequence_only(self._key_at(self._expected_tags, position)):
                    handled.add(position)

        details: list[Detail] = []
        for difference in tag_differences:
            details.extend(self._describe(difference, handled))
        # A moved key and its value can describe the same change twice.
        return list(dict.fromkeys(details))

    def _describe(self, difference: PropertyDifference, handled: set) -> list[Detail]:
        diff_type = difference.difference_type
        if diff_type == DifferenceType.ADD:
            return self._tag_list(diff_type, difference.actual_value, DetailStyle.POSITIVE, difference)
        if diff_type == DifferenceType.REMOVE:
            return self._tag_list(diff_type, difference.expected_value, DetailStyle.WARNING, difference)

        position, attribute = _tag_position(difference.property_path)
        expected_key = self._key_at(self._expected_tags, position)
        actual_key = self._key_at(self._actual_tags, position)

        if attribute == "Key":
            expected_key = expected_key or decode_value(difference.expected_value)
            actual_key = actual_key or decode_value(difference.actual_value)
            if self._ignored(expected_key, actual_key):
                return []
            if position in handled:
                return [Detail(f"{diff_type}: Tag {expected_key} sequence change")]
            values = self._tag_map.get(expected_key)
            if values is not None and values.actual is not None:
                return [Detail(f"{diff_type}: {expected_key} - {values.expected} => {values.actual}")]
            return [Detail(f"{diff_type}: {TAGS} - key {expected_key} => {actual_key}")]

        if attribute == "Value":
            if position in handled:
                return []
            key = expected_key or actual_key
            if self._ignored(key):
                return []
            if key is not None and expected_key != actual_key and self._is_sequence_only(key):
                return []
            values = self._tag_map.get(key) if key else None
            if values is not None and values.actual is not None:
                expected, actual = values.expected, values.actual
            else:
                expected = decode_value(difference.expected_value)
                actual = decode_value(difference.actual_value)
            return [Detail(f"{diff_type}: {key} - {expected} => {actual}")]

        return [
            Detail(
                f"{diff_type}: {difference.property_path} - "
                f"{difference.expected_value} => {difference.actual_value}"
            )
        ]

    def _tag_list(
        self,
        diff_type: DifferenceType,
        raw: str | None,
        style: DetailStyle,
        difference: PropertyDifference,
    ) -> list[Detail]:
        value = decode_value(raw)
        tags = value if isinstance(value, list) else [value]
        if not all(isinstance(t, dict) and "Key" in t for t in tags):
            return [Detail(f"{diff_type}: {difference.property_path} - {raw}", style)]
        return [
            Detail(f"{diff_type}: {TAGS} - {t['Key']}: {t.get('Value', '')}", style)
            for t in tags
            if not self._ignored(t["Key"])
        ]
