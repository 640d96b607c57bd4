"""Toolgate Observability: OpenTelemetry tracing and metrics.

Export is opt-in via OTEL_EXPORTER_OTLP_ENDPOINT (requires the ``otel``
extra). Without it, spans and instruments are non-recording.
"""

from toolgate.observability.metrics import (
    measure_tool_duration,
    record_policy_denial,
    record_quota_check,
    record_tool_call,
    record_tool_duration,
)
from toolgate.observability.tracing import get_tracer, init_tracing

__all__ = [
    "init_tracing",
    "get_tracer",
    "measure_tool_duration",
    "record_policy_denial",
    "record_quota_check",
    "record_tool_call",
    "record_tool_duration",
]
