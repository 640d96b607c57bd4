"""OpenTelemetry metrics for toolgate.

Counters and histograms for tool calls, policy denials and quota checks.
Instruments come from the global meter provider; until an SDK provider is
installed (see ``init_tracing``) the OpenTelemetry API hands out no-op
instruments, so recording is always safe.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import metrics

if TYPE_CHECKING:
    from collections.abc import Generator

_meter = None
_tool_calls_total = None
_tool_call_duration = None
_policy_denials_total = None
_quota_checks_total = None


def _ensure_meter() -> None:
    """Lazily create the meter and instruments."""
    global _meter, _tool_calls_total, _tool_call_duration, _policy_denials_total, _quota_checks_total

    if _meter is not None:
        return

    _meter = metrics.get_meter("toolgate", "0.1.0")

    _tool_calls_total = _meter.create_counter(
        "toolgate.tool_calls.total",
        description="Total tool call outcomes by status",
        unit="1",
    )
    _tool_call_duration = _meter.create_histogram(
        "toolgate.tool_call.duration_seconds",
        description="Effect execution duration in seconds",
        unit="s",
    )
    _policy_denials_total = _meter.create_counter(
        "toolgate.policy_denials.total",
        description="Tool calls refused by workspace policy",
        unit="1",
    )
    _quota_checks_total = _meter.create_counter(
        "toolgate.quota_checks.total",
        description="Quota checks and reservations by outcome",
        unit="1",
    )


def record_tool_call(*, tool_name: str, status: str, risk_level: str = "UNKNOWN") -> None:
    """Record a tool call reaching a status (pending, executed, failed, ...)."""
    _ensure_meter()
    _tool_calls_total.add(
        1,
        {"toolgate.tool_name": tool_name, "toolgate.status": status, "toolgate.risk_level": risk_level},
    )


def record_tool_duration(*, tool_name: str, duration_seconds: float) -> None:
    _ensure_meter()
    _tool_call_duration.record(duration_seconds, {"toolgate.tool_name": tool_name})


def record_policy_denial(*, tool_name: str, rule: str) -> None:
    _ensure_meter()
    _policy_denials_total.add(1, {"toolgate.tool_name": tool_name, "toolgate.rule": rule})


def record_quota_check(*, kind: str, allowed: bool) -> None:
    _ensure_meter()
    _quota_checks_total.add(1, {"toolgate.quota_kind": kind, "toolgate.allowed": str(allowed)})


@contextmanager
def measure_tool_duration(tool_name: str) -> Generator[None, None, None]:
    """Context manager to measure and record effect duration."""
    start = time.monotonic()
    try:
        yield
    finally:
        record_tool_duration(tool_name=tool_name, duration_seconds=time.monotonic() - start)
