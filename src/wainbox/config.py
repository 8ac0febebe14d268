"""Ingestion settings loaded from environment variables.

Environment:
- WHATSAPP_BUSINESS_NUMBERS: comma-separated business numbers (digits kept)
- INGEST_BATCH_SIZE: messages processed concurrently per group (default 10)
- STATUS_RETRY_ATTEMPTS: attempts per status event (default 3)
- STATUS_RETRY_INTERVAL_SECONDS: linear backoff step (default 0.5)
- WHATSAPP_CONVERSATION_HINTS: "substring=waId" pairs, comma-separated
- STORAGE_BACKEND: "postgres" (default) or "memory"
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Mapping

from wainbox.whatsapp.phone import normalize_digits

StorageBackend = Literal["postgres", "memory"]

DEFAULT_BATCH_SIZE = 10
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_INTERVAL_SECONDS = 0.5


@dataclass(frozen=True)
class IngestSettings:
    """Knobs for the webhook ingestion pipeline."""

    business_numbers: tuple[str, ...] = ()
    batch_size: int = DEFAULT_BATCH_SIZE
    status_retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    status_retry_interval: float = DEFAULT_RETRY_INTERVAL_SECONDS
    conversation_hints: Mapping[str, str] = field(default_factory=dict)
    storage_backend: StorageBackend = "postgres"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.status_retry_attempts < 1:
            raise ValueError("status_retry_attempts must be >= 1")
        if self.status_retry_interval < 0:
            raise ValueError("status_retry_interval must be >= 0")
        if self.storage_backend not in ("postgres", "memory"):
            raise ValueError(f"Unknown STORAGE_BACKEND: {self.storage_backend}")

    @property
    def primary_business_number(self) -> str | None:
        """First configured business number, if any."""
        return self.business_numbers[0] if self.business_numbers else None

    @classmethod
    def from_env(cls) -> "IngestSettings":
        """Build settings from the current environment."""
        return cls(
            business_numbers=_parse_numbers(os.environ.get("WHATSAPP_BUSINESS_NUMBERS", "")),
            batch_size=_int_env("INGEST_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            status_retry_attempts=_int_env("STATUS_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS),
            status_retry_interval=_float_env(
                "STATUS_RETRY_INTERVAL_SECONDS", DEFAULT_RETRY_INTERVAL_SECONDS
            ),
            conversation_hints=_parse_hints(os.environ.get("WHATSAPP_CONVERSATION_HINTS", "")),
            storage_backend=os.environ.get("STORAGE_BACKEND", "postgres"),  # type: ignore[arg-type]
        )


def _parse_numbers(raw: str) -> tuple[str, ...]:
    numbers: list[str] = []
    for part in raw.split(","):
        digits = normalize_digits(part)
        if digits and digits not in numbers:
            numbers.append(digits)
    return tuple(numbers)


def _parse_hints(raw: str) -> dict[str, str]:
    """Parse "conv1=919937320320,conv2=929967673820"."""
    hints: dict[str, str] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        key, _, wa_id = part.partition("=")
        key = key.strip()
        digits = normalize_digits(wa_id)
        if key and digits:
            hints[key] = digits
    return hints


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
