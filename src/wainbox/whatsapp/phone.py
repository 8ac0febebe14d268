"""Phone number helpers for WhatsApp ids.

A waId is the conversation partner's number as digits only: 10-15 digits,
never starting with 0.
"""

import re
from typing import Any

_NON_DIGITS = re.compile(r"\D")
_WA_ID_PATTERN = re.compile(r"^[1-9]\d{9,14}$")


class InvalidWaIdError(ValueError):
    """Raised when a value cannot be used as a waId."""

    pass


def normalize_digits(value: Any) -> str:
    """Strip everything but digits. None becomes an empty string."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def is_valid_wa_id(value: Any) -> bool:
    """Check the digits-only waId format (10-15 digits, no leading zero)."""
    if not isinstance(value, str):
        return False
    return bool(_WA_ID_PATTERN.match(value))


def require_wa_id(value: Any) -> str:
    """Normalize a waId and validate it.

    Raises:
        InvalidWaIdError: If the normalized value is not 10-15 digits or
            starts with 0.
    """
    digits = normalize_digits(value)
    if not is_valid_wa_id(digits):
        raise InvalidWaIdError(f"waId must be 10-15 digits not starting with 0 (got {len(digits)} digits)")
    return digits


def format_phone_for_display(value: Any) -> str:
    """Format a number for humans, e.g. "+91 98765 43210"."""
    digits = normalize_digits(value)
    if not digits:
        return ""
    if len(digits) >= 12:
        return f"+{digits[:2]} {digits[2:7]} {digits[7:]}"
    if len(digits) == 11:
        return f"+{digits[0]} {digits[1:4]} {digits[4:7]} {digits[7:]}"
    if len(digits) == 10:
        return f"{digits[:5]} {digits[5:]}"
    return f"+{digits}"
