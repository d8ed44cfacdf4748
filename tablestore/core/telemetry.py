"""
OpenTelemetry tracing for Store operations.

Every Store operation runs inside a span named `Store.<operation>`. Until
`init_telemetry()` installs a tracer provider, the OpenTelemetry API hands
out non-recording spans and tracing costs next to nothing.

Settings:
- OTEL_ENABLED: turn tracing on (default: false)
- OTEL_SERVICE_NAME: service.name resource attribute (default: tablestore)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC collector (default: http://localhost:4317)
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from tablestore import __version__
from tablestore.core.config import Settings

logger = logging.getLogger(__name__)

TRACER_NAME = "tablestore"

# Installed provider, kept for shutdown
_tracer_provider: TracerProvider | None = None


def init_telemetry(
    settings: Settings, span_exporter: SpanExporter | None = None
) -> TracerProvider | None:
    """
    Install a tracer provider exporting Store spans in batches.

    Args:
        settings: Application settings
        span_exporter: Exporter to use instead of OTLP (e.g. in tests)

    Returns:
        The installed provider, or None when tracing is disabled or setup failed
    """
    global _tracer_provider

    if not settings.otel_enabled:
        logger.info("Tracing disabled")
        return None

    resource = Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            DEPLOYMENT_ENVIRONMENT: settings.app_env.value,
            "service.version": __version__,
        }
    )
    try:
        provider = TracerProvider(resource=resource)
        exporter = span_exporter or OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    except Exception as e:
        logger.error(f"Tracing setup failed: {e}", exc_info=True)
        return None

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    logger.info(
        f"Tracing enabled for {settings.otel_service_name}",
        extra={"endpoint": settings.otel_exporter_otlp_endpoint},
    )
    return provider


def shutdown_telemetry() -> None:
    """Flush pending spans and release the exporter."""
    global _tracer_provider

    if _tracer_provider is None:
        return
    provider, _tracer_provider = _tracer_provider, None
    try:
        provider.shutdown()
    except Exception as e:
        logger.error(f"Tracing shutdown failed: {e}", exc_info=True)


@contextmanager
def store_span(operation: str, **attributes: Any) -> Iterator[trace.Span]:
    """Open the span for one Store operation; None-valued attributes are skipped."""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(f"Store.{operation}") as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def _recording_context() -> trace.SpanContext | None:
    span = trace.get_current_span()
    return span.get_span_context() if span.is_recording() else None


def get_trace_id() -> str | None:
    """Hex trace id of the active span, or None outside a recording span."""
    context = _recording_context()
    return format(context.trace_id, "032x") if context else None


def get_span_id() -> str | None:
    context = _recording_context()
    return format(context.span_id, "016x") if context else None
