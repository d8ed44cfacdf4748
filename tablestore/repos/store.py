"""
Generic Store over one entity type.

A Store maps one entity model onto the shared table through the engine
port. It validates before every write, stamps timestamps, derives keys
and index projections through the entity, paginates with opaque tokens
and splits batch work into engine-sized chunks.

Absent rows are a normal result (None), never an error. Conflicts,
validation failures and engine failures propagate unchanged; the only
retries the Store performs are the bounded retry rounds for keys and
items a batch call left unprocessed.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tablestore.core.config import ENGINE_TRANSACT_MAX, TableConfig
from tablestore.core.deadline import Deadline, within
from tablestore.core.errors import (
    ConditionFailedError,
    DeadlineExceededError,
    OperationCancelledError,
    TransactionConflictError,
    TransientEngineError,
    ValidationError,
)
from tablestore.core.observability import store_metrics
from tablestore.core.optimistic_lock import modification_error, version_condition
from tablestore.core.telemetry import store_span
from tablestore.core.timeutil import MonotonicClock, format_timestamp
from tablestore.db.engine import (
    Engine,
    Item,
    QueryRequest,
    TransactConditionCheck,
    TransactDelete,
    TransactOperation,
    TransactPut,
    TransactUpdate,
    operation_key,
)
from tablestore.db.models import EntityModel, EntityUpdate
from tablestore.domain.conditions import (
    Condition,
    IfNotExists,
    ItemChanges,
    KeyCondition,
    attribute_exists,
    attribute_not_exists,
    eq,
)
from tablestore.domain.enums import SortOrder
from tablestore.domain.keys import (
    CREATED_AT,
    ENTITY_TYPE,
    PARTITION_KEY,
    PRIMARY_INDEX,
    SECONDARY_INDEXES,
    SORT_KEY,
    UPDATED_AT,
    IndexSpec,
    StoreKey,
)
from tablestore.repos.batching import backoff_delay, chunked
from tablestore.repos.pagination import decode_token, encode_token

logger = logging.getLogger(__name__)

_INDEXES = {spec.name: spec for spec in (PRIMARY_INDEX, *SECONDARY_INDEXES)}


# ============================================================================
# Results
# ============================================================================


@dataclass
class QueryResult[E]:
    """One page of a query. `next_token` is None when the index is exhausted."""

    items: list[E]
    count: int
    next_token: str | None = None


@dataclass
class QueryAllResult[E]:
    """
    Concatenated pages of a query.

    `truncated` means the item cap stopped traversal while the index may
    hold more; `cancelled` means the caller's deadline did. Either way
    `next_token` resumes exactly after the last item returned.
    """

    items: list[E]
    truncated: bool = False
    cancelled: bool = False
    next_token: str | None = None


@dataclass
class CountResult:
    count: int
    cancelled: bool = False


@dataclass
class BatchGetResult[E]:
    """Items found, plus keys still unprocessed after retries."""

    items: list[E]
    unprocessed: list[StoreKey] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class BatchWriteResult[E]:
    """Entities written, plus entities still unprocessed after retries."""

    succeeded: list[E]
    unprocessed: list[E] = field(default_factory=list)
    cancelled: bool = False


class Store[E: EntityModel]:
    """
    Data access for one entity type.

    Args:
        engine: Shared engine handle
        entity_cls: Entity model this Store reads and writes
        config: Paging and batching limits
        clock: Source of write stamps; must never repeat an instant
    """

    def __init__(
        self,
        engine: Engine,
        entity_cls: type[E],
        config: TableConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.engine = engine
        self.entity_cls = entity_cls
        self.config = config or TableConfig()
        self.clock = clock or MonotonicClock()
        self.entity_label = entity_cls.entity_type.value

    # -------------------------------------------------------------------
    # Single-item reads
    # -------------------------------------------------------------------

    async def get(self, key: StoreKey, deadline: Deadline | None = None) -> E | None:
        """Fetch one entity by primary key; None when the row does not exist."""
        with store_span("get", entity=self.entity_label), store_metrics.track(
            "get", self.entity_label
        ):
            item = await within(deadline, lambda: self.engine.get_item(key))
            if item is None or not self._owns(item):
                return None
            store_metrics.items("get", self.entity_label, 1)
            return self.entity_cls.from_item(item)

    async def exists(self, key: StoreKey, deadline: Deadline | None = None) -> bool:
        """Existence probe that transfers only key and type attributes."""
        with store_span("exists", entity=self.entity_label), store_metrics.track(
            "exists", self.entity_label
        ):
            item = await within(
                deadline,
                lambda: self.engine.get_item(key, projection=(PARTITION_KEY, ENTITY_TYPE)),
            )
            return item is not None and self._owns(item)

    # -------------------------------------------------------------------
    # Single-item writes
    # -------------------------------------------------------------------

    async def create(self, entity: E, deadline: Deadline | None = None) -> E:
        """
        Insert a new row; the only operation that introduces rows.

        Returns a stamped copy (createdAt = updatedAt = now). The caller's
        object is left untouched.

        Raises:
            ValidationError: Entity is invalid (nothing is written)
            ConditionFailedError: A row already exists at the entity's key
        """
        with store_span("create", entity=self.entity_label), store_metrics.track(
            "create", self.entity_label
        ):
            entity.validate_entity()
            now = self.clock()
            stamped = entity.model_copy(update={"created_at": now, "updated_at": now})
            key = stamped.primary_key()
            try:
                await within(
                    deadline,
                    lambda: self.engine.put_item(
                        stamped.to_item(), condition=(attribute_not_exists(PARTITION_KEY),)
                    ),
                )
            except ConditionFailedError as e:
                logger.warning(
                    f"{self.entity_label} create conflict: row already exists",
                    extra={"entity": self.entity_label, "partition": key.partition},
                )
                raise ConditionFailedError(
                    f"{self.entity_label} already exists",
                    details={"partition": key.partition, "sort": key.sort},
                    item=e.item,
                ) from e
            store_metrics.items("create", self.entity_label, 1)
            logger.info(
                f"Created {self.entity_label}",
                extra={"entity": self.entity_label, "partition": key.partition},
            )
            return stamped

    async def save(self, entity: E, deadline: Deadline | None = None) -> E:
        """
        Create-or-replace.

        Writes every attribute of the entity and removes optional attributes
        it does not have, in one atomic update. An existing row keeps its
        createdAt (and any index key derived from it).
        """
        with store_span("save", entity=self.entity_label), store_metrics.track(
            "save", self.entity_label
        ):
            entity.validate_entity()
            now = self.clock()
            stamped = entity.model_copy(
                update={"created_at": entity.created_at or now, "updated_at": now}
            )
            key = stamped.primary_key()
            item = stamped.to_item()

            changes = ItemChanges()
            for name, value in item.items():
                if name not in (PARTITION_KEY, SORT_KEY):
                    changes.set[name] = value
            for name in (CREATED_AT, *self.entity_cls.projection_attributes("created_at")):
                if name in changes.set:
                    changes.set[name] = IfNotExists(changes.set[name])
            removable = self.entity_cls.attribute_names() | self.entity_cls.projection_attributes()
            changes.remove = sorted(removable - set(item))

            new_item = await within(deadline, lambda: self.engine.update_item(key, changes))
            store_metrics.items("save", self.entity_label, 1)
            logger.info(
                f"Saved {self.entity_label}",
                extra={"entity": self.entity_label, "partition": key.partition},
            )
            return self.entity_cls.from_item(new_item)

    async def update(
        self,
        key: StoreKey,
        changes: Mapping[str, Any] | EntityUpdate,
        expected_updated_at: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> E | None:
        """
        Apply a partial update and return the merged entity.

        Only the given attributes change; `None` removes an optional
        attribute. updatedAt is always stamped. Returns None when the row
        does not exist (nothing is written).

        Args:
            key: Primary key of the row
            changes: Field -> value mapping, or a validated update model
            expected_updated_at: Opt-in optimistic check against the stored stamp
            deadline: Caller deadline / cancellation

        Raises:
            ValidationError: Unknown, immutable or invalid attributes
            ConcurrentModificationError: The row changed since `expected_updated_at`
        """
        with store_span("update", entity=self.entity_label), store_metrics.track(
            "update", self.entity_label
        ):
            update = self.entity_cls.parse_update(changes)
            item_changes = self.entity_cls.item_changes(update)
            item_changes.set[UPDATED_AT] = format_timestamp(self.clock())

            condition = list(self._ownership_condition())
            if expected_updated_at is not None:
                condition.append(version_condition(expected_updated_at))

            try:
                new_item = await within(
                    deadline,
                    lambda: self.engine.update_item(key, item_changes, condition=condition),
                )
            except ConditionFailedError as e:
                if e.item is None or not self._owns(e.item):
                    logger.info(
                        f"{self.entity_label} update skipped: row does not exist",
                        extra={"entity": self.entity_label, "partition": key.partition},
                    )
                    return None
                if expected_updated_at is None:
                    raise
                logger.warning(
                    f"{self.entity_label} update rejected: concurrent modification",
                    extra={"entity": self.entity_label, "partition": key.partition},
                )
                raise modification_error(
                    self.entity_label, key.partition, expected_updated_at, e.item
                ) from e

            store_metrics.items("update", self.entity_label, 1)
            logger.info(
                f"Updated {self.entity_label}",
                extra={
                    "entity": self.entity_label,
                    "partition": key.partition,
                    "attributes": sorted(item_changes.attributes),
                },
            )
            return self.entity_cls.from_item(new_item)

    async def delete(self, key: StoreKey, deadline: Deadline | None = None) -> None:
        """Hard delete; deleting an absent row is not an error."""
        with store_span("delete", entity=self.entity_label), store_metrics.track(
            "delete", self.entity_label
        ):
            await within(deadline, lambda: self.engine.delete_item(key))
            logger.info(
                f"Deleted {self.entity_label}",
                extra={"entity": self.entity_label, "partition": key.partition},
            )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    async def query_by_index(
        self,
        index: IndexSpec | str,
        key_condition: KeyCondition,
        filters: Sequence[Condition] = (),
        order: SortOrder = SortOrder.DESCENDING,
        limit: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryResult[E]:
        """
        Fetch one page from an index.

        Items come in the index's sort order, newest-first by default.
        Only rows of this Store's entity type are returned. `limit`
        bounds the rows evaluated, so a filtered page may be short and
        still carry a `next_token`.

        Raises:
            ValidationError: Bad index, limit or sort condition
            TokenDecodeError: `token` is malformed or from another index or partition
        """
        spec = self._resolve_index(index)
        with store_span("query_by_index", entity=self.entity_label, index=spec.name):
            with store_metrics.track("query_by_index", self.entity_label):
                marker = self._decode_marker(token, spec, key_condition)
                request = self._query_request(spec, key_condition, filters, order, limit, marker)
                page = await within(deadline, lambda: self.engine.query(request))
                items = [self.entity_cls.from_item(item) for item in page.items]
                store_metrics.items("query_by_index", self.entity_label, len(items))
                logger.info(
                    f"Queried {spec.name} for {self.entity_label}",
                    extra={
                        "entity": self.entity_label,
                        "index": spec.name,
                        "count": len(items),
                        "has_more": page.last_evaluated_key is not None,
                    },
                )
                return QueryResult(
                    items=items,
                    count=len(items),
                    next_token=encode_token(page.last_evaluated_key),
                )

    async def query_all_pages(
        self,
        index: IndexSpec | str,
        key_condition: KeyCondition,
        filters: Sequence[Condition] = (),
        order: SortOrder = SortOrder.DESCENDING,
        max_items: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryAllResult[E]:
        """
        Follow pages until the index is exhausted or `max_items` is reached.

        `max_items` defaults to the configured cap and is never unbounded.
        A cancelled or expired deadline stops traversal and returns what
        was collected so far.
        """
        max_items = self.config.max_query_items if max_items is None else max_items
        if max_items < 1:
            raise ValidationError("max_items must be at least 1", details={"max_items": max_items})
        spec = self._resolve_index(index)

        with store_span("query_all_pages", entity=self.entity_label, index=spec.name):
            with store_metrics.track("query_all_pages", self.entity_label):
                marker = self._decode_marker(token, spec, key_condition)
                items: list[E] = []
                pages = 0
                cancelled = False
                while True:
                    if deadline is not None and deadline.cancelled():
                        cancelled = True
                        break
                    page_size = min(self.config.query_all_page_size, max_items - len(items))
                    request = self._query_request(
                        spec, key_condition, filters, order, page_size, marker
                    )
                    try:
                        page = await within(deadline, lambda: self.engine.query(request))
                    except (DeadlineExceededError, OperationCancelledError):
                        cancelled = True
                        break
                    pages += 1
                    items.extend(self.entity_cls.from_item(item) for item in page.items)
                    marker = page.last_evaluated_key
                    if marker is None or len(items) >= max_items:
                        break

                truncated = marker is not None and not cancelled
                store_metrics.items("query_all_pages", self.entity_label, len(items))
                log = logger.warning if cancelled else logger.info
                log(
                    f"Queried all pages of {spec.name} for {self.entity_label}",
                    extra={
                        "entity": self.entity_label,
                        "index": spec.name,
                        "count": len(items),
                        "pages": pages,
                        "truncated": truncated,
                        "cancelled": cancelled,
                    },
                )
                return QueryAllResult(
                    items=items,
                    truncated=truncated,
                    cancelled=cancelled,
                    next_token=encode_token(marker),
                )

    async def count_by_index(
        self,
        index: IndexSpec | str,
        key_condition: KeyCondition,
        filters: Sequence[Condition] = (),
        deadline: Deadline | None = None,
    ) -> CountResult:
        """Count matching rows without transferring them, following every page."""
        spec = self._resolve_index(index)
        with store_span("count_by_index", entity=self.entity_label, index=spec.name):
            with store_metrics.track("count_by_index", self.entity_label):
                marker = None
                count = 0
                cancelled = False
                while True:
                    if deadline is not None and deadline.cancelled():
                        cancelled = True
                        break
                    request = self._query_request(
                        spec,
                        key_condition,
                        filters,
                        SortOrder.ASCENDING,
                        limit=None,
                        marker=marker,
                        select_count=True,
                    )
                    try:
                        page = await within(deadline, lambda: self.engine.query(request))
                    except (DeadlineExceededError, OperationCancelledError):
                        cancelled = True
                        break
                    count += page.count
                    marker = page.last_evaluated_key
                    if marker is None:
                        break
                logger.info(
                    f"Counted {spec.name} for {self.entity_label}",
                    extra={"entity": self.entity_label, "index": spec.name, "count": count},
                )
                return CountResult(count=count, cancelled=cancelled)

    # -------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------

    async def batch_get(
        self, keys: Sequence[StoreKey], deadline: Deadline | None = None
    ) -> BatchGetResult[E]:
        """
        Fetch any number of rows in engine-sized chunks.

        Duplicate keys are fetched once. Keys the engine leaves unprocessed
        are retried with backoff; whatever is left afterwards is reported
        in `unprocessed`, never raised. Items come back in request order.
        """
        with store_span("batch_get", entity=self.entity_label), store_metrics.track(
            "batch_get", self.entity_label
        ):
            unique_keys = list(dict.fromkeys(keys))
            found: dict[StoreKey, Item] = {}
            unprocessed: list[StoreKey] = []
            cancelled = False

            async def fetch(pending: list[StoreKey]) -> list[StoreKey]:
                response = await self.engine.batch_get_item(pending)
                for item in response.items:
                    found[StoreKey.from_item(item)] = item
                return response.unprocessed_keys

            chunks = list(chunked(unique_keys, self.config.batch_get_limit))
            for position, chunk in enumerate(chunks):
                if deadline is not None and deadline.cancelled():
                    cancelled = True
                    unprocessed.extend(key for rest in chunks[position:] for key in rest)
                    break
                leftover, interrupted = await self._with_retries(
                    "batch_get", chunk, fetch, deadline
                )
                unprocessed.extend(leftover)
                if interrupted:
                    cancelled = True
                    unprocessed.extend(key for rest in chunks[position + 1 :] for key in rest)
                    break

            items = [
                self.entity_cls.from_item(found[key])
                for key in unique_keys
                if key in found and self._owns(found[key])
            ]
            store_metrics.items("batch_get", self.entity_label, len(items))
            self._report_unprocessed("batch_get", len(unique_keys), len(unprocessed), cancelled)
            return BatchGetResult(items=items, unprocessed=unprocessed, cancelled=cancelled)

    async def batch_write(
        self, entities: Sequence[E], deadline: Deadline | None = None
    ) -> BatchWriteResult[E]:
        """
        Put any number of entities in engine-sized chunks.

        Every entity is validated, and primary keys are checked for
        duplicates, before anything is written. Writes are full puts:
        entities without createdAt get it stamped now. Partial success is
        reported as `unprocessed`, never raised.
        """
        with store_span("batch_write", entity=self.entity_label), store_metrics.track(
            "batch_write", self.entity_label
        ):
            now = self.clock()
            stamped: dict[StoreKey, E] = {}
            for entity in entities:
                entity.validate_entity()
                copy = entity.model_copy(
                    update={"created_at": entity.created_at or now, "updated_at": now}
                )
                key = copy.primary_key()
                if key in stamped:
                    raise ValidationError(
                        f"Duplicate {self.entity_label} key in batch",
                        details={"partition": key.partition, "sort": key.sort},
                    )
                stamped[key] = copy

            items = [entity.to_item() for entity in stamped.values()]
            unprocessed_keys: list[StoreKey] = []
            cancelled = False

            async def put(pending: list[Item]) -> list[Item]:
                response = await self.engine.batch_write_item(pending)
                return response.unprocessed_items

            chunks = list(chunked(items, self.config.batch_write_limit))
            for position, chunk in enumerate(chunks):
                if deadline is not None and deadline.cancelled():
                    cancelled = True
                    unprocessed_keys.extend(
                        StoreKey.from_item(item) for rest in chunks[position:] for item in rest
                    )
                    break
                leftover, interrupted = await self._with_retries(
                    "batch_write", chunk, put, deadline
                )
                unprocessed_keys.extend(StoreKey.from_item(item) for item in leftover)
                if interrupted:
                    cancelled = True
                    unprocessed_keys.extend(
                        StoreKey.from_item(item) for rest in chunks[position + 1 :] for item in rest
                    )
                    break

            failed = set(unprocessed_keys)
            succeeded = [entity for key, entity in stamped.items() if key not in failed]
            unprocessed = [entity for key, entity in stamped.items() if key in failed]
            store_metrics.items("batch_write", self.entity_label, len(succeeded))
            self._report_unprocessed("batch_write", len(stamped), len(unprocessed), cancelled)
            return BatchWriteResult(
                succeeded=succeeded, unprocessed=unprocessed, cancelled=cancelled
            )

    async def _with_retries[P](
        self,
        operation: str,
        chunk: list[P],
        call: Callable[[list[P]], Any],
        deadline: Deadline | None,
    ) -> tuple[list[P], bool]:
        """
        Issue one chunk and retry what the engine leaves unprocessed.

        Throttled chunk requests count as fully unprocessed. Returns the
        leftover after the retry budget, and whether the deadline
        interrupted the chunk.
        """
        pending = chunk
        attempt = 0
        while True:
            store_metrics.chunk(operation, self.entity_label)
            try:
                pending = await within(deadline, lambda: call(pending))
            except (DeadlineExceededError, OperationCancelledError):
                return pending, True
            except TransientEngineError as e:
                logger.warning(
                    f"{operation} chunk throttled: {e.message}",
                    extra={"entity": self.entity_label, "pending": len(pending)},
                )
            if not pending:
                return [], False
            if attempt >= self.config.batch_max_retries:
                return pending, False
            if deadline is not None and deadline.cancelled():
                return pending, True
            attempt += 1
            logger.info(
                f"Retrying {len(pending)} unprocessed {operation} entries",
                extra={"entity": self.entity_label, "attempt": attempt},
            )
            await asyncio.sleep(backoff_delay(attempt, self.config.batch_retry_base_delay))

    def _report_unprocessed(
        self, operation: str, total: int, unprocessed: int, cancelled: bool
    ) -> None:
        store_metrics.unprocessed(operation, self.entity_label, unprocessed)
        extra = {
            "entity": self.entity_label,
            "total": total,
            "unprocessed": unprocessed,
            "cancelled": cancelled,
        }
        if unprocessed or cancelled:
            logger.warning(
                f"{operation} finished with {unprocessed} of {total} unprocessed", extra=extra
            )
        else:
            logger.info(f"{operation} processed {total} {self.entity_label} entries", extra=extra)

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    def put_operation(self, entity: E, if_absent: bool = True) -> TransactPut:
        """Transactional put of a validated, stamped entity (create-if-absent by default)."""
        entity.validate_entity()
        now = self.clock()
        stamped = entity.model_copy(
            update={"created_at": entity.created_at or now, "updated_at": now}
        )
        condition = (attribute_not_exists(PARTITION_KEY),) if if_absent else ()
        return TransactPut(item=stamped.to_item(), condition=condition)

    def update_operation(
        self,
        key: StoreKey,
        changes: Mapping[str, Any] | EntityUpdate | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: Sequence[Condition] = (),
    ) -> TransactUpdate:
        """
        Transactional partial update of an existing row.

        `add` applies numeric deltas to attributes of this entity type
        (e.g. a balance). The row must exist and belong to this Store.
        """
        item_changes = ItemChanges()
        if changes:
            item_changes = self.entity_cls.item_changes(self.entity_cls.parse_update(changes))
        for attribute, delta in (add or {}).items():
            if attribute not in self.entity_cls.attribute_names():
                raise ValidationError(
                    f"Unknown {self.entity_label} attribute: {attribute}",
                    details={"attribute": attribute},
                )
            item_changes.add[attribute] = delta
        if item_changes.is_empty():
            raise ValidationError(f"{self.entity_label} update changes nothing")
        item_changes.set[UPDATED_AT] = format_timestamp(self.clock())
        return TransactUpdate(
            key=key,
            changes=item_changes,
            condition=(*self._ownership_condition(), *condition),
        )

    def delete_operation(
        self, key: StoreKey, condition: Sequence[Condition] = ()
    ) -> TransactDelete:
        return TransactDelete(key=key, condition=tuple(condition))

    def condition_check(self, key: StoreKey, *condition: Condition) -> TransactConditionCheck:
        if not condition:
            raise ValidationError("A condition check needs at least one condition")
        return TransactConditionCheck(key=key, condition=condition)

    async def transact_write(
        self, operations: Sequence[TransactOperation], deadline: Deadline | None = None
    ) -> None:
        """
        Apply operations as one all-or-nothing unit.

        Raises:
            ValidationError: Empty, oversized, or two operations on one row
            TransactionConflictError: A condition failed; nothing was applied
        """
        with store_span("transact_write", entity=self.entity_label), store_metrics.track(
            "transact_write", self.entity_label
        ):
            if not operations or len(operations) > ENGINE_TRANSACT_MAX:
                raise ValidationError(
                    f"A transaction takes 1 to {ENGINE_TRANSACT_MAX} operations",
                    details={"count": len(operations)},
                )
            keys = [operation_key(op) for op in operations]
            if len(set(keys)) != len(keys):
                raise ValidationError("A transaction cannot touch the same row twice")
            try:
                await within(deadline, lambda: self.engine.transact_write_items(operations))
            except TransactionConflictError as e:
                logger.warning(
                    f"Transaction of {len(operations)} operations cancelled",
                    extra={"entity": self.entity_label, "reasons": e.reasons},
                )
                raise
            logger.info(
                f"Transaction of {len(operations)} operations committed",
                extra={"entity": self.entity_label, "operations": len(operations)},
            )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _owns(self, item: Mapping[str, Any]) -> bool:
        return item.get(ENTITY_TYPE) == self.entity_label

    def _ownership_condition(self) -> tuple[Condition, ...]:
        return (attribute_exists(PARTITION_KEY), eq(ENTITY_TYPE, self.entity_label))

    @staticmethod
    def _decode_marker(
        token: str | None, spec: IndexSpec, key_condition: KeyCondition
    ) -> dict[str, Any] | None:
        return decode_token(
            token, spec.key_attributes, partition=(spec.partition_attr, key_condition.partition)
        )

    def _resolve_index(self, index: IndexSpec | str) -> IndexSpec:
        if isinstance(index, IndexSpec):
            return index
        spec = _INDEXES.get(index)
        if spec is None:
            raise ValidationError(f"Unknown index: {index}", details={"index": index})
        return spec

    def _query_request(
        self,
        spec: IndexSpec,
        key_condition: KeyCondition,
        filters: Sequence[Condition],
        order: SortOrder,
        limit: int | None,
        marker: Item | None,
        select_count: bool = False,
    ) -> QueryRequest:
        if not key_condition.partition:
            raise ValidationError("Query needs a partition value", details={"index": spec.name})
        if key_condition.sort is not None and spec.sort_attr is None:
            raise ValidationError(
                f"{spec.name} has no sort key to apply a range condition to",
                details={"index": spec.name},
            )
        if limit is None and not select_count:
            limit = self.config.default_page_size
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        return QueryRequest(
            partition_attr=spec.partition_attr,
            partition_value=key_condition.partition,
            index_name=None if spec.is_primary else self.config.physical_index_name(spec.name),
            sort_attr=spec.sort_attr,
            sort_condition=key_condition.sort,
            filters=(*filters, eq(ENTITY_TYPE, self.entity_label)),
            limit=limit,
            ascending=order == SortOrder.ASCENDING,
            exclusive_start_key=marker,
            select_count=select_count,
        )
