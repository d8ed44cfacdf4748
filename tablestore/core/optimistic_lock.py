"""
Optimistic locking utilities for concurrent modification detection.

Rows carry an `updatedAt` stamp that strictly increases with every write.
A caller that read a row can pass the stamp it saw back to `update`; the
write is then conditioned on the stamp still matching, and fails with
`ConcurrentModificationError` if another writer got there first.

The check is opt-in: without an expected stamp, updates stay last-writer-wins.
"""

from datetime import datetime
from typing import Any

from tablestore.core.errors import ConflictError
from tablestore.core.timeutil import format_timestamp
from tablestore.domain.conditions import Condition, eq
from tablestore.domain.keys import UPDATED_AT


class ConcurrentModificationError(ConflictError):
    """
    Raised when an update fails due to concurrent modification.

    This occurs when the expected `updatedAt` doesn't match the stored
    one, indicating another writer modified the row after it was read.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_updated_at: str,
        actual_updated_at: str | None,
    ):
        super().__init__(
            f"{entity_type} was modified by another writer. Please refresh and try again.",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_updated_at": expected_updated_at,
                "actual_updated_at": actual_updated_at,
            },
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_updated_at = expected_updated_at
        self.actual_updated_at = actual_updated_at


def version_condition(expected_updated_at: datetime) -> Condition:
    """Condition that holds only while the row still carries the expected stamp."""
    return eq(UPDATED_AT, format_timestamp(expected_updated_at))


def modification_error(
    entity_type: str,
    entity_id: str,
    expected_updated_at: datetime,
    current_item: dict[str, Any],
) -> ConcurrentModificationError:
    """Build the error for a failed version condition from the row as it is now."""
    return ConcurrentModificationError(
        entity_type=entity_type,
        entity_id=entity_id,
        expected_updated_at=format_timestamp(expected_updated_at),
        actual_updated_at=current_item.get(UPDATED_AT),
    )
