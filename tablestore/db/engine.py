"""
Port to the underlying key-value engine.

The Store talks to the table only through `Engine`. Two implementations
ship with the package: `DynamoDBEngine` (boto3) and `InMemoryEngine`
(tests and local development). Both share one engine instance across all
Stores; neither holds locks across an await.

Items crossing this boundary are plain attribute maps with JSON-like
values (str, int, float, bool, None, list, dict). Keys are `StoreKey`.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from tablestore.domain.conditions import Condition, ItemChanges, SortCondition
from tablestore.domain.keys import StoreKey

Item = dict[str, Any]


@dataclass(frozen=True)
class QueryRequest:
    """
    One page request against the table or a secondary index.

    `index_name` is the physical index name, or None for the table's own
    primary key. `limit` bounds the number of items *evaluated*; filters
    are applied afterwards, so a page may hold fewer than `limit` items
    and still carry a resume marker.
    """

    partition_attr: str
    partition_value: str
    index_name: str | None = None
    sort_attr: str | None = None
    sort_condition: SortCondition | None = None
    filters: tuple[Condition, ...] = ()
    limit: int | None = None
    ascending: bool = False
    exclusive_start_key: Item | None = None
    select_count: bool = False


@dataclass
class QueryPage:
    items: list[Item] = field(default_factory=list)
    count: int = 0
    scanned_count: int = 0
    last_evaluated_key: Item | None = None


@dataclass
class BatchGetResponse:
    items: list[Item] = field(default_factory=list)
    unprocessed_keys: list[StoreKey] = field(default_factory=list)


@dataclass
class BatchWriteResponse:
    unprocessed_items: list[Item] = field(default_factory=list)


# ============================================================================
# Transaction operations
# ============================================================================


@dataclass(frozen=True)
class TransactPut:
    item: Item
    condition: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class TransactUpdate:
    key: StoreKey
    changes: ItemChanges
    condition: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class TransactDelete:
    key: StoreKey
    condition: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class TransactConditionCheck:
    key: StoreKey
    condition: tuple[Condition, ...]


TransactOperation = TransactPut | TransactUpdate | TransactDelete | TransactConditionCheck


def operation_key(operation: TransactOperation) -> StoreKey:
    """Primary key targeted by a transaction operation."""
    if isinstance(operation, TransactPut):
        return StoreKey.from_item(operation.item)
    return operation.key


class Engine(Protocol):
    """
    Asynchronous table operations.

    Conditional writes raise `ConditionFailedError`; cancelled transactions
    raise `TransactionConflictError`; throttling and timeouts raise
    `TransientEngineError`; everything else unexpected is `EngineError`.
    """

    async def get_item(self, key: StoreKey, projection: Sequence[str] | None = None) -> Item | None:
        ...

    async def put_item(self, item: Item, condition: Sequence[Condition] = ()) -> None:
        ...

    async def update_item(
        self, key: StoreKey, changes: ItemChanges, condition: Sequence[Condition] = ()
    ) -> Item:
        """Apply `changes` and return the full item as stored afterwards."""
        ...

    async def delete_item(self, key: StoreKey, condition: Sequence[Condition] = ()) -> None:
        ...

    async def query(self, request: QueryRequest) -> QueryPage:
        ...

    async def batch_get_item(self, keys: Sequence[StoreKey]) -> BatchGetResponse:
        ...

    async def batch_write_item(self, items: Sequence[Item]) -> BatchWriteResponse:
        ...

    async def transact_write_items(self, operations: Sequence[TransactOperation]) -> None:
        ...
