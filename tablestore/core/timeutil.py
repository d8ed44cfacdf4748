"""
Timestamp helpers.

Stored timestamps are fixed-width UTC strings (microsecond precision,
trailing "Z"), so lexicographic order equals chronological order and they
can be embedded in sort keys.
"""

import threading
from datetime import UTC, datetime, timedelta
from typing import Annotated

from pydantic import BeforeValidator, PlainSerializer

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    return to_utc(datetime.fromisoformat(value))


def utc_now() -> datetime:
    return datetime.now(UTC)


class MonotonicClock:
    """
    Wall clock that never hands out the same instant twice.

    Two mutations of one row in the same microsecond still get strictly
    increasing `updatedAt` values.
    """

    def __init__(self, source=utc_now):
        self._source = source
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = to_utc(self._source())
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


def _coerce_timestamp(value):
    if isinstance(value, (str, datetime)):
        return parse_timestamp(value)
    return value


# Entity field type: aware UTC datetime in memory, fixed-width string in items
Timestamp = Annotated[
    datetime,
    BeforeValidator(_coerce_timestamp),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]
