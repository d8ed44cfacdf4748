"""
Logging and metrics for the table store.

Provides:
- JSON log lines carrying the caller's correlation id and the active trace
- Prometheus counters and histograms for Store operations, batch chunks
  and the edge cache, on a private registry
- `store_metrics.track()`, which times one Store operation and labels it
  with its outcome

Usage:
    from tablestore.core.observability import correlation, store_metrics

    with correlation("req-42"):
        with store_metrics.track("get", "USER"):
            ...
"""

import json
import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from tablestore.core.errors import ConflictError, TransientEngineError, ValidationError

# ============================================================================
# Correlation
# ============================================================================

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation(correlation_id: str | None = None) -> Iterator[str]:
    """Scope a correlation id (a fresh UUID if none is given) to a block."""
    value = correlation_id or str(uuid.uuid4())
    token = _correlation_id.set(value)
    try:
        yield value
    finally:
        _correlation_id.reset(token)


# ============================================================================
# Structured Logging
# ============================================================================

# Attributes every LogRecord has; anything else arrived through `extra=`
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per log record.

    Keys: timestamp, level, logger, message, source (file/line/function),
    and when present correlation_id, trace_id, span_id, exception and
    extra (the caller's `extra=` mapping).
    """

    def format(self, record: logging.LogRecord) -> str:
        from tablestore.core.telemetry import get_span_id, get_trace_id

        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }
        optional = {
            "correlation_id": get_correlation_id(),
            "trace_id": get_trace_id(),
            "span_id": get_span_id(),
            "exception": _exception_summary(record),
            "extra": {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS},
        }
        entry.update((key, value) for key, value in optional.items() if value)
        return json.dumps(entry, default=str)


def _exception_summary(record: logging.LogRecord) -> dict[str, str] | None:
    if not record.exc_info or record.exc_info[0] is None:
        return None
    error_type, error, _ = record.exc_info
    return {"type": error_type.__name__, "message": str(error)}


def configure_structured_logging(level: str = "INFO", structured: bool = True) -> None:
    """
    Replace the root logger's handlers with one stderr handler.

    Args:
        level: Log level name; unknown names fall back to INFO
        structured: JSON lines when true, plain text otherwise
    """
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter()
        if structured
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))


# ============================================================================
# Prometheus Metrics
# ============================================================================

_registry = CollectorRegistry()

_LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class Metrics:
    """
    Data-access metrics, all registered on one registry.

    - store_*: operation count by outcome, latency, items moved
    - store_batch_*: chunk requests and keys/items left unprocessed
    - edge_cache_*: lookups by hit/miss/expired
    """

    def __init__(self, registry: CollectorRegistry) -> None:
        self.registry = registry
        op_labels = ["operation", "entity"]

        self.store_operations_total = Counter(
            "store_operations_total",
            "Total Store operations",
            [*op_labels, "status"],
            registry=registry,
        )
        self.store_operation_duration_seconds = Histogram(
            "store_operation_duration_seconds",
            "Store operation latency in seconds",
            op_labels,
            buckets=_LATENCY_BUCKETS,
            registry=registry,
        )
        self.store_items_total = Counter(
            "store_items_total",
            "Items read or written by Store operations",
            op_labels,
            registry=registry,
        )
        self.store_batch_chunks_total = Counter(
            "store_batch_chunks_total",
            "Chunk requests issued by batch operations",
            op_labels,
            registry=registry,
        )
        self.store_batch_unprocessed_total = Counter(
            "store_batch_unprocessed_total",
            "Keys or items still unprocessed after retries",
            op_labels,
            registry=registry,
        )
        self.edge_cache_requests_total = Counter(
            "edge_cache_requests_total",
            "Edge cache lookups by result",
            ["cache", "result"],
            registry=registry,
        )


metrics = Metrics(_registry)


def _status_for(error: Exception) -> str:
    if isinstance(error, ConflictError):
        return "conflict"
    if isinstance(error, ValidationError):
        return "invalid"
    if isinstance(error, TransientEngineError):
        return "transient"
    return "error"


class StoreMetricsWrapper:
    """
    Records Store operations against a `Metrics` instance.

    Usage in the Store:
        with store_metrics.track("get", "USER"):
            item = await engine.get_item(key)
    """

    def __init__(self, metrics_instance: Metrics | None = None) -> None:
        self.metrics = metrics_instance or metrics

    @contextmanager
    def track(self, operation: str, entity: str) -> Iterator[None]:
        """Time the block and count it as success, conflict, invalid, transient or error."""
        start = time.perf_counter()
        status = "success"
        try:
            yield
        except Exception as e:
            status = _status_for(e)
            raise
        finally:
            labels = {"operation": operation, "entity": entity}
            self.metrics.store_operation_duration_seconds.labels(**labels).observe(
                time.perf_counter() - start
            )
            self.metrics.store_operations_total.labels(**labels, status=status).inc()

    def items(self, operation: str, entity: str, count: int) -> None:
        if count:
            self.metrics.store_items_total.labels(operation=operation, entity=entity).inc(count)

    def chunk(self, operation: str, entity: str) -> None:
        self.metrics.store_batch_chunks_total.labels(operation=operation, entity=entity).inc()

    def unprocessed(self, operation: str, entity: str, count: int) -> None:
        if count:
            self.metrics.store_batch_unprocessed_total.labels(
                operation=operation, entity=entity
            ).inc(count)


store_metrics = StoreMetricsWrapper()


def metrics_text() -> bytes:
    """Metrics in Prometheus text format for scraping."""
    return generate_latest(_registry)
