"""OpenTelemetry tracing setup for toolgate.

Initializes an OTLP exporter when OTEL_EXPORTER_OTLP_ENDPOINT is set and
the ``otel`` extra (SDK + exporter) is installed. Without it the API's
default provider returns non-recording spans.
"""

from __future__ import annotations

import os

from opentelemetry import trace
from opentelemetry.trace import Tracer

from toolgate.logging import get_logger

logger = get_logger("toolgate.observability")

_initialized = False
_enabled = False


def init_tracing(
    endpoint: str | None = None,
    service_name: str | None = None,
) -> bool:
    """Initialize OpenTelemetry tracing and metrics export.

    Args:
        endpoint: OTLP endpoint URL. Falls back to OTEL_EXPORTER_OTLP_ENDPOINT env var.
        service_name: Service name for traces. Falls back to OTEL_SERVICE_NAME env var.

    Returns:
        True if export was configured, False if skipped (no endpoint or SDK missing).
    """
    global _initialized, _enabled

    if _initialized:
        return _enabled

    _initialized = True

    endpoint = endpoint or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return False

    service_name = service_name or os.environ.get("OTEL_SERVICE_NAME", "toolgate")

    try:
        from opentelemetry import metrics
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.warning("OTLP endpoint set but opentelemetry-sdk is not installed; pip install 'toolgate[otel]'")
        return False

    resource = Resource.create({"service.name": service_name})

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)

    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=endpoint))
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))

    _enabled = True
    return True


def get_tracer() -> Tracer:
    """Get the toolgate tracer from the current global provider."""
    return trace.get_tracer("toolgate", "0.1.0")


def shutdown() -> None:
    """Flush and shut down the tracer provider, if it supports it."""
    global _initialized, _enabled
    provider = trace.get_tracer_provider()
    if hasattr(provider, "shutdown"):
        provider.shutdown()
    _initialized = False
    _enabled = False
