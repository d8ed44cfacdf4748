"""
In-process implementation of the engine port.

Behaves like DynamoDB where the Store can observe a difference:
- Writes to one item are atomic; conditions are evaluated against the
  item as stored at the moment of the write.
- Secondary indexes are sparse: an item appears in an index only when it
  carries that index's key attributes.
- Query `Limit` bounds the items evaluated, before filters.
- Transactions are all-or-nothing and reject two operations on one item.

Unlike DynamoDB, a page carries `last_evaluated_key` only when more items
actually remain.
"""

import asyncio
import copy
import logging
from collections.abc import Sequence
from typing import Any

from tablestore.core.config import ENGINE_BATCH_GET_MAX, ENGINE_BATCH_WRITE_MAX, ENGINE_TRANSACT_MAX
from tablestore.core.errors import ConditionFailedError, TransactionConflictError, ValidationError
from tablestore.db.engine import (
    BatchGetResponse,
    BatchWriteResponse,
    Item,
    QueryPage,
    QueryRequest,
    TransactConditionCheck,
    TransactDelete,
    TransactOperation,
    TransactPut,
    TransactUpdate,
    operation_key,
)
from tablestore.domain.conditions import Condition, IfNotExists, ItemChanges
from tablestore.domain.keys import PARTITION_KEY, SORT_KEY, StoreKey

logger = logging.getLogger(__name__)

_RowKey = tuple[str, str | None]


def _row_key(key: StoreKey) -> _RowKey:
    return (key.partition, key.sort)


def _check_key(key: StoreKey) -> None:
    if not key.partition:
        raise ValidationError("Partition key must be a non-empty string")
    if key.sort is not None and not key.sort:
        raise ValidationError("Sort key must be a non-empty string")


def apply_changes(item: Item, changes: ItemChanges) -> Item:
    """Return a copy of `item` with `changes` applied (DynamoDB update semantics)."""
    overlap = (
        (set(changes.set) & set(changes.remove))
        | (set(changes.set) & set(changes.add))
        | (set(changes.remove) & set(changes.add))
    )
    if overlap:
        raise ValidationError(
            "Two document paths overlap in one update", details={"attributes": sorted(overlap)}
        )
    touched_keys = changes.attributes & {PARTITION_KEY, SORT_KEY}
    if touched_keys:
        raise ValidationError(
            "Primary key attributes cannot be updated", details={"attributes": sorted(touched_keys)}
        )

    updated = copy.deepcopy(item)
    for name, value in changes.set.items():
        if isinstance(value, IfNotExists):
            if name not in updated:
                updated[name] = copy.deepcopy(value.value)
        else:
            updated[name] = copy.deepcopy(value)
    for name in changes.remove:
        updated.pop(name, None)
    for name, delta in changes.add.items():
        current = updated.get(name, 0)
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise ValidationError(
                "ADD applies only to numeric attributes", details={"attribute": name}
            )
        updated[name] = current + delta
    return updated


class InMemoryEngine:
    """
    Dictionary-backed engine.

    Args:
        page_item_cap: Upper bound on items evaluated per query page, to
            emulate the engine's per-response size cap (None: unbounded)
    """

    def __init__(self, page_item_cap: int | None = None):
        self._rows: dict[_RowKey, Item] = {}
        self.page_item_cap = page_item_cap

    def __len__(self) -> int:
        return len(self._rows)

    def dump(self) -> list[Item]:
        """Copy of every stored item (for tests and debugging)."""
        return [copy.deepcopy(item) for item in self._rows.values()]

    def clear(self) -> None:
        self._rows.clear()

    # -------------------------------------------------------------------
    # Single-item operations
    # -------------------------------------------------------------------

    async def get_item(self, key: StoreKey, projection: Sequence[str] | None = None) -> Item | None:
        await asyncio.sleep(0)
        _check_key(key)
        item = self._rows.get(_row_key(key))
        if item is None:
            return None
        if projection is not None:
            return {name: copy.deepcopy(item[name]) for name in projection if name in item}
        return copy.deepcopy(item)

    async def put_item(self, item: Item, condition: Sequence[Condition] = ()) -> None:
        await asyncio.sleep(0)
        key = self._key_of(item)
        self._check_condition(key, condition)
        self._rows[_row_key(key)] = copy.deepcopy(item)

    async def update_item(
        self, key: StoreKey, changes: ItemChanges, condition: Sequence[Condition] = ()
    ) -> Item:
        await asyncio.sleep(0)
        _check_key(key)
        current = self._check_condition(key, condition)
        updated = apply_changes(current if current is not None else key.to_item(), changes)
        self._rows[_row_key(key)] = updated
        return copy.deepcopy(updated)

    async def delete_item(self, key: StoreKey, condition: Sequence[Condition] = ()) -> None:
        await asyncio.sleep(0)
        _check_key(key)
        self._check_condition(key, condition)
        self._rows.pop(_row_key(key), None)

    # -------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------

    async def query(self, request: QueryRequest) -> QueryPage:
        await asyncio.sleep(0)
        if request.limit is not None and request.limit < 1:
            raise ValidationError("Limit must be at least 1", details={"limit": request.limit})

        sort_attr = request.sort_attr
        candidates = []
        for item in self._rows.values():
            if item.get(request.partition_attr) != request.partition_value:
                continue
            if sort_attr is not None and sort_attr not in item:
                continue
            if request.sort_condition is not None and not request.sort_condition.matches(
                item[sort_attr]
            ):
                continue
            candidates.append(item)

        def position(item: dict[str, Any]) -> tuple:
            sort_value = item.get(sort_attr, "") if sort_attr else ""
            return (sort_value, item.get(PARTITION_KEY, ""), item.get(SORT_KEY) or "")

        candidates.sort(key=position, reverse=not request.ascending)

        if request.exclusive_start_key is not None:
            start = position(request.exclusive_start_key)
            if request.ascending:
                candidates = [item for item in candidates if position(item) > start]
            else:
                candidates = [item for item in candidates if position(item) < start]

        page_size = len(candidates)
        if request.limit is not None:
            page_size = min(page_size, request.limit)
        if self.page_item_cap is not None:
            page_size = min(page_size, self.page_item_cap)
        evaluated = candidates[:page_size]
        matched = [
            item for item in evaluated if all(cond.matches(item) for cond in request.filters)
        ]

        last_evaluated_key = None
        if len(evaluated) < len(candidates) and evaluated:
            last = evaluated[-1]
            key_attrs = {PARTITION_KEY, SORT_KEY, request.partition_attr}
            if sort_attr:
                key_attrs.add(sort_attr)
            last_evaluated_key = {name: last[name] for name in key_attrs if name in last}

        return QueryPage(
            items=[] if request.select_count else [copy.deepcopy(item) for item in matched],
            count=len(matched),
            scanned_count=len(evaluated),
            last_evaluated_key=last_evaluated_key,
        )

    # -------------------------------------------------------------------
    # Batch operations
    # -------------------------------------------------------------------

    async def batch_get_item(self, keys: Sequence[StoreKey]) -> BatchGetResponse:
        await asyncio.sleep(0)
        if not keys or len(keys) > ENGINE_BATCH_GET_MAX:
            raise ValidationError(
                f"Batch get accepts 1 to {ENGINE_BATCH_GET_MAX} keys", details={"count": len(keys)}
            )
        if len(set(keys)) != len(keys):
            raise ValidationError("Provided list of item keys contains duplicates")
        items = []
        for key in keys:
            _check_key(key)
            item = self._rows.get(_row_key(key))
            if item is not None:
                items.append(copy.deepcopy(item))
        return BatchGetResponse(items=items)

    async def batch_write_item(self, items: Sequence[Item]) -> BatchWriteResponse:
        await asyncio.sleep(0)
        if not items or len(items) > ENGINE_BATCH_WRITE_MAX:
            raise ValidationError(
                f"Batch write accepts 1 to {ENGINE_BATCH_WRITE_MAX} items",
                details={"count": len(items)},
            )
        keys = [self._key_of(item) for item in items]
        if len(set(keys)) != len(keys):
            raise ValidationError("Provided list of item keys contains duplicates")
        for key, item in zip(keys, items, strict=True):
            self._rows[_row_key(key)] = copy.deepcopy(item)
        return BatchWriteResponse()

    async def transact_write_items(self, operations: Sequence[TransactOperation]) -> None:
        await asyncio.sleep(0)
        if not operations or len(operations) > ENGINE_TRANSACT_MAX:
            raise ValidationError(
                f"Transactions accept 1 to {ENGINE_TRANSACT_MAX} operations",
                details={"count": len(operations)},
            )
        keys = [operation_key(op) for op in operations]
        for key in keys:
            _check_key(key)
        if len(set(keys)) != len(keys):
            raise ValidationError("Transaction contains more than one operation on the same item")

        reasons: list[str | None] = []
        for key, op in zip(keys, operations, strict=True):
            current = self._rows.get(_row_key(key))
            passed = all(cond.matches(current) for cond in op.condition)
            reasons.append(None if passed else "ConditionalCheckFailed")
        if any(reasons):
            logger.debug(f"Transaction cancelled: {reasons}")
            raise TransactionConflictError(
                "Transaction cancelled, please refer cancellation reasons for specific reasons",
                reasons=reasons,
            )

        # Compute every new row before applying any of them
        staged: list[tuple[_RowKey, Item | None]] = []
        for key, op in zip(keys, operations, strict=True):
            if isinstance(op, TransactPut):
                staged.append((_row_key(key), copy.deepcopy(op.item)))
            elif isinstance(op, TransactUpdate):
                current = self._rows.get(_row_key(key))
                base = current if current is not None else key.to_item()
                staged.append((_row_key(key), apply_changes(base, op.changes)))
            elif isinstance(op, TransactDelete):
                staged.append((_row_key(key), None))
            elif not isinstance(op, TransactConditionCheck):
                raise ValidationError(f"Unsupported transaction operation: {type(op).__name__}")

        for row_key, item in staged:
            if item is None:
                self._rows.pop(row_key, None)
            else:
                self._rows[row_key] = item

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _key_of(self, item: Item) -> StoreKey:
        if not isinstance(item.get(PARTITION_KEY), str):
            raise ValidationError("Item is missing its partition key", details={"item": item})
        key = StoreKey.from_item(item)
        _check_key(key)
        return key

    def _check_condition(self, key: StoreKey, condition: Sequence[Condition]) -> Item | None:
        current = self._rows.get(_row_key(key))
        if not all(cond.matches(current) for cond in condition):
            raise ConditionFailedError(
                "The conditional request failed",
                details={"partition": key.partition, "sort": key.sort},
                item=copy.deepcopy(current),
            )
        return current
