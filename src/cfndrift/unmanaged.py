"""Detection of resources that no CloudFormation stack resource accounts for."""

import logging
from collections.abc import Collection, Iterable

from cfndrift.models import ChangeType, Detail, DriftRow, StackResourceDrift

logger = logging.getLogger(__name__)

UNMANAGED_DETAIL = "Not managed by this CloudFormation stack"


class ManagedResourceIndex:
    """Physical ID to logical ID map of every resource in a stack."""

    def __init__(self, physical_to_logical: dict[str, str] | None = None):
        self._physical_to_logical = dict(physical_to_logical or {})

    @classmethod
    def from_drifts(cls, drifts: Iterable[StackResourceDrift]) -> "ManagedResourceIndex":
        return cls({d.physical_id: d.logical_id for d in drifts if d.physical_id})

    def __contains__(self, physical_id: str) -> bool:
        return physical_id in self._physical_to_logical

    def __len__(self) -> int:
        return len(self._physical_to_logical)

    def logical_id(self, physical_id: str) -> str | None:
        return self._physical_to_logical.get(physical_id)

    def logical_to_physical(self) -> dict[str, str]:
        return {logical: physical for physical, logical in self._physical_to_logical.items()}


def detect_unmanaged(
    all_resources: dict[str, str],
    managed: ManagedResourceIndex,
    ignore: Collection[str] = (),
) -> list[DriftRow]:
    """Return an UNMANAGED row for every listed resource the stack does not manage."""
    rows = []
    for physical_id in sorted(all_resources):
        if physical_id in managed:
            continue
        if physical_id in ignore:
            logger.debug("Ignoring unmanaged resource %s", physical_id)
            continue
        rows.append(
            DriftRow(
                logical_id=physical_id,
                resource_type=all_resources[physical_id],
                change_type=ChangeType.UNMANAGED,
                details=(Detail(UNMANAGED_DETAIL),),
            )
        )
    return rows
