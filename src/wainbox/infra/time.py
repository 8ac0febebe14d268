"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_unix_timestamp(value: Any) -> datetime | None:
    """Parse a WhatsApp epoch-seconds timestamp ("1704067200" or int).

    Returns:
        Timezone-aware UTC datetime, or None if the value is absent or
        not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    try:
        return datetime.fromtimestamp(seconds, timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_epoch_millis(value: datetime) -> int:
    """Convert datetime to integer epoch milliseconds."""
    return int(value.timestamp() * 1000)
