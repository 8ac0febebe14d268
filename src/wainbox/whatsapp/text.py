"""Text helpers for message bodies and previews."""

import re

# WhatsApp text message limit
MAX_MESSAGE_LENGTH = 4096

_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v]+")
_LINE_BREAKS = re.compile(r"[\r\n]+")


def sanitize_message_text(text: str | None, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Trim, collapse repeated spaces and line breaks, and cap the length."""
    if not text:
        return ""
    cleaned = _HORIZONTAL_SPACE.sub(" ", text.strip())
    cleaned = _LINE_BREAKS.sub("\n", cleaned)
    return cleaned[:limit]


def truncate(text: str | None, limit: int) -> str:
    """Hard-truncate to at most ``limit`` characters."""
    if not text:
        return ""
    return text[:limit]


def message_preview(text: str | None, max_length: int = 50) -> str:
    """Short single-line preview ending in "..." when cut."""
    if not text:
        return ""
    sanitized = " ".join(sanitize_message_text(text).split())
    if len(sanitized) <= max_length:
        return sanitized
    return sanitized[: max_length - 3] + "..."
