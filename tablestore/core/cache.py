"""
Bounded, time-expiring in-process cache for caller-facing reads.

Entries are advisory: any entry may be evicted at any time, either
because it aged past the TTL or because the cache is full (least
recently used goes first). Nothing in the Store consults this cache.

NOTE: The cache is per-process. Multiple replicas each hold their own
copy, so a write in one replica is not seen by reads served from
another replica's cache until the entry expires.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable

from tablestore.core.observability import metrics

logger = logging.getLogger(__name__)


class TTLCache[K: Hashable, V]:
    """
    LRU cache with per-entry expiry.

    Args:
        name: Label for metrics and logs
        max_entries: Upper bound on entries held
        ttl_seconds: Lifetime of each entry
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        name: str,
        max_entries: int = 1000,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.name = name
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: K) -> V | None:
        """Return the live entry for `key`, or None on a miss or expiry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                result = "miss"
                value = None
            elif entry[0] <= now:
                del self._entries[key]
                result = "expired"
                value = None
            else:
                self._entries.move_to_end(key)
                result = "hit"
                value = entry[1]
        metrics.edge_cache_requests_total.labels(cache=self.name, result=result).inc()
        return value

    def put(self, key: K, value: V) -> None:
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            self._entries[key] = (expires_at, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted {evicted!r} from {self.name} cache")

    def invalidate(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_where(self, predicate: Callable[[V], bool]) -> int:
        """Drop every entry whose value matches `predicate`; returns how many were dropped."""
        with self._lock:
            doomed = [key for key, (_, value) in self._entries.items() if predicate(value)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
