"""Toolgate Policy: per-workspace execution, access, quota and PII rules."""

from toolgate.policy.engine import (
    PolicyEngine,
    is_external_communication,
    is_write_operation,
    operation_type,
    quota_kind,
    window_start,
)
from toolgate.policy.redaction import PII_PATTERNS, redact_text, redact_value

__all__ = [
    "PII_PATTERNS",
    "PolicyEngine",
    "is_external_communication",
    "is_write_operation",
    "operation_type",
    "quota_kind",
    "redact_text",
    "redact_value",
    "window_start",
]
