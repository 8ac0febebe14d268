"""Redaction helpers for safe logging. All payload data must pass through these."""

import re
from datetime import datetime
from typing import Any

# Patterns that should never appear in logs. ISO dates match first and are
# kept as they are.
_DATE_OR_PHONE_PATTERN = re.compile(
    r"(?P<date>\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?)"
    r"|(?P<phone>\+?\d[\d\s\-()]{8,}\d)"
)
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

PHONE_MIN_DIGITS = 10

_REDACTED = "[REDACTED]"


def _redact_phone(match: re.Match) -> str:
    phone = match.group("phone")
    if phone is None or sum(c.isdigit() for c in phone) < PHONE_MIN_DIGITS:
        return match.group(0)
    return _REDACTED


def redact_string(value: str) -> str:
    """Redact phone numbers and e-mail addresses from a string."""
    result = _DATE_OR_PHONE_PATTERN.sub(_redact_phone, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Message objects and payloads: structure only
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
