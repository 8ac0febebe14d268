"""Hashing utilities for log-safe identifiers.

Phone numbers identify people and never appear in logs. Log lines carry a
short SHA-256 prefix instead, stable enough to correlate entries for the
same conversation.
"""

import hashlib


def hash_identifier(value: str | None) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    if not value:
        return "none"
    return hashlib.sha256(value.encode()).hexdigest()[:12]
