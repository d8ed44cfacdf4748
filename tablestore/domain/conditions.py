"""
Typed conditions for queries and conditional writes.

Conditions are plain values: engines translate them (the DynamoDB engine
into expression strings, the in-memory engine into predicates). A tuple of
conditions always means their conjunction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Op(str, Enum):
    EQ = "="
    NE = "<>"
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    BETWEEN = "BETWEEN"
    BEGINS_WITH = "begins_with"
    EXISTS = "attribute_exists"
    NOT_EXISTS = "attribute_not_exists"


# Operators allowed on an index sort component
SORT_KEY_OPS = frozenset({Op.EQ, Op.LT, Op.LTE, Op.GT, Op.GTE, Op.BETWEEN, Op.BEGINS_WITH})

_ARITY = {
    Op.EQ: 1,
    Op.NE: 1,
    Op.LT: 1,
    Op.LTE: 1,
    Op.GT: 1,
    Op.GTE: 1,
    Op.BETWEEN: 2,
    Op.BEGINS_WITH: 1,
    Op.EXISTS: 0,
    Op.NOT_EXISTS: 0,
}

_MISSING = object()


def _comparable(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right)
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return True
    return type(left) is type(right)


def evaluate(op: Op, actual: Any, values: tuple[Any, ...]) -> bool:
    """Evaluate one operator against an attribute value (`_MISSING` if absent)."""
    if op is Op.EXISTS:
        return actual is not _MISSING
    if op is Op.NOT_EXISTS:
        return actual is _MISSING
    if actual is _MISSING:
        # Only inequality holds for a missing attribute
        return op is Op.NE
    if op is Op.EQ:
        return _comparable(actual, values[0]) and actual == values[0]
    if op is Op.NE:
        return not (_comparable(actual, values[0]) and actual == values[0])
    if op is Op.BEGINS_WITH:
        return isinstance(actual, str) and actual.startswith(values[0])
    if op is Op.BETWEEN:
        low, high = values
        return _comparable(actual, low) and _comparable(actual, high) and low <= actual <= high
    if not _comparable(actual, values[0]):
        return False
    if op is Op.LT:
        return actual < values[0]
    if op is Op.LTE:
        return actual <= values[0]
    if op is Op.GT:
        return actual > values[0]
    return actual >= values[0]


@dataclass(frozen=True)
class Condition:
    """`attribute <op> values` over one item attribute."""

    attribute: str
    op: Op
    values: tuple[Any, ...] = ()

    def __post_init__(self):
        if len(self.values) != _ARITY[self.op]:
            raise ValueError(f"{self.op.value} takes {_ARITY[self.op]} value(s)")

    def matches(self, item: dict[str, Any] | None) -> bool:
        actual = _MISSING if item is None else item.get(self.attribute, _MISSING)
        return evaluate(self.op, actual, self.values)


@dataclass(frozen=True)
class SortCondition:
    """Range condition on the sort component of an index."""

    op: Op
    values: tuple[Any, ...]

    def __post_init__(self):
        if self.op not in SORT_KEY_OPS:
            raise ValueError(f"{self.op.value} is not allowed on a sort key")
        if len(self.values) != _ARITY[self.op]:
            raise ValueError(f"{self.op.value} takes {_ARITY[self.op]} value(s)")

    def matches(self, value: Any) -> bool:
        return evaluate(self.op, value, self.values)


@dataclass(frozen=True)
class KeyCondition:
    """Equality on the index partition component plus an optional sort condition."""

    partition: str
    sort: SortCondition | None = None


@dataclass(frozen=True)
class IfNotExists:
    """Update value applied only when the attribute is not set yet."""

    value: Any


@dataclass
class ItemChanges:
    """
    A partial update of one item.

    `set` replaces attributes (values may be wrapped in IfNotExists),
    `remove` deletes attributes and `add` applies numeric deltas.
    """

    set: dict[str, Any] = field(default_factory=dict)
    remove: list[str] = field(default_factory=list)
    add: dict[str, int | float] = field(default_factory=dict)

    @property
    def attributes(self) -> set[str]:
        return set(self.set) | set(self.remove) | set(self.add)

    def is_empty(self) -> bool:
        return not (self.set or self.remove or self.add)


# ============================================================================
# Builders
# ============================================================================


def eq(attribute: str, value: Any) -> Condition:
    return Condition(attribute, Op.EQ, (value,))


def ne(attribute: str, value: Any) -> Condition:
    return Condition(attribute, Op.NE, (value,))


def gte(attribute: str, value: Any) -> Condition:
    return Condition(attribute, Op.GTE, (value,))


def attribute_exists(attribute: str) -> Condition:
    return Condition(attribute, Op.EXISTS)


def attribute_not_exists(attribute: str) -> Condition:
    return Condition(attribute, Op.NOT_EXISTS)


def key_equals(partition: str) -> KeyCondition:
    return KeyCondition(partition)


def sort_begins_with(prefix: str) -> SortCondition:
    return SortCondition(Op.BEGINS_WITH, (prefix,))


def sort_between(start: Any, end: Any) -> SortCondition:
    return SortCondition(Op.BETWEEN, (start, end))


def sort_equals(value: Any) -> SortCondition:
    return SortCondition(Op.EQ, (value,))
