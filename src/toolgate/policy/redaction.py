"""
PII redaction patterns.

Ordered substitutions applied to free text before it is stored or shown
when a workspace enables ``redact_pii``. Replacement tokens contain no
digits and no ``@``, and every pattern consumes at least one of those, so
repeating the pass until nothing changes always terminates. The result is
a fixed point, which makes ``redact_text`` idempotent.
"""

from __future__ import annotations

import re
from typing import Any

PII_PATTERNS: list[tuple[str, re.Pattern[str], str]] = [
    (
        "email",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "[EMAIL]",
    ),
    (
        # French numbers: 06 12 34 56 78, 06.12.34.56.78, +33 6 12 34 56 78
        "phone",
        re.compile(r"(?<![\w+])(?:\+33|0)\s*[1-9](?:[\s.-]*\d{2}){4}\b"),
        "[PHONE]",
    ),
    (
        # NIR: 1 85 05 78 006 084 36
        "ssn",
        re.compile(r"\b[12]\s*\d{2}\s*\d{2}\s*\d{2}\s*\d{3}\s*\d{3}\s*\d{2}\b"),
        "[SSN]",
    ),
    (
        "iban",
        re.compile(r"\b[A-Z]{2}\d{2}(?:\s?[A-Z0-9]{4}){3,7}(?:\s?[A-Z0-9]{1,3})?\b"),
        "[IBAN]",
    ),
    (
        "card",
        re.compile(r"\b\d{4}(?:[\s-]?\d{4}){3}\b"),
        "[CARD]",
    ),
]


def _redact_once(text: str) -> str:
    for _name, pattern, replacement in PII_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_text(text: str) -> str:
    """Replace PII substrings with placeholder tokens until a fixed point."""
    if not text:
        return text
    redacted = _redact_once(text)
    while True:
        again = _redact_once(redacted)
        if again == redacted:
            return redacted
        redacted = again


def redact_value(value: Any) -> Any:
    """Recursively redact string leaves of a JSON-like structure."""
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {k: redact_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [redact_value(v) for v in value]
    return value
