"""Webhook ingestion - drive one payload (or a directory of them) through the pipeline.

Processing order within a payload is part of the contract:

1. Entries and their ``messages`` changes, in payload order.
2. Per change: ``contacts[]`` first (message storage relies on the
   partner's contact), then ``messages[]`` in groups of ``batch_size`` run
   concurrently, then ``statuses[]`` one at a time in array order.
3. Over a directory: files whose name contains "status" run after all
   other files, each group in name order.

Item-level failures (one message, one status event, one contact) are
recorded in the BatchResult and never stop sibling items. A malformed
payload raises MalformedPayloadError and aborts only that payload.
"""

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, TypeVar

from wainbox.config import IngestSettings
from wainbox.infra.repositories import build_repositories
from wainbox.infra.repositories.base import (
    ContactRepository,
    MessageRepository,
    StorageTransientError,
)
from wainbox.infra.time import from_unix_timestamp, utc_now
from wainbox.observability.correlation import correlation_scope
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context
from wainbox.whatsapp.content import extract_content
from wainbox.whatsapp.direction import (
    DirectionUnresolvedError,
    require_resolved,
    resolve_direction,
)
from wainbox.whatsapp.meta_adapter import (
    InvalidStatusEventError,
    MalformedPayloadError,
    MessageChange,
    get_payload_id,
    iter_message_changes,
    parse_contact,
    parse_status_event,
)
from wainbox.whatsapp.models import VALID_STATUSES, NewMessage, StatusEvent
from wainbox.whatsapp.phone import InvalidWaIdError

from .contacts import ContactLedger
from .messages import MessageStore, MessageValidationError, StoreResult
from .status import ReconcileOutcome, ReconcileResult, StatusReconciler

logger = get_logger(__name__)

T = TypeVar("T")

ItemStage = Literal["contact", "message", "status"]

# Recorded as item errors without a traceback
_MESSAGE_ITEM_ERRORS = (
    DirectionUnresolvedError,
    InvalidWaIdError,
    MessageValidationError,
    StorageTransientError,
)


@dataclass(frozen=True)
class ItemError:
    """One failed item with enough context for operator logs."""

    external_id: str | None
    stage: ItemStage
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"external_id": self.external_id, "stage": self.stage, "message": self.message}


@dataclass
class BatchResult:
    """Per-payload accumulator returned by WebhookIngestor.process_payload()."""

    payload_id: str | None = None
    messages_stored: int = 0
    duplicate_messages: int = 0
    statuses_applied: int = 0
    placeholders_created: int = 0
    statuses_dropped: int = 0
    contacts_touched: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def processed_items(self) -> int:
        """Messages and status events handled without error."""
        return (
            self.messages_stored
            + self.duplicate_messages
            + self.statuses_applied
            + self.placeholders_created
            + self.statuses_dropped
        )

    @property
    def failed_items(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payload_id": self.payload_id,
            "processed_items": self.processed_items,
            "failed_items": self.failed_items,
            "messages_stored": self.messages_stored,
            "duplicate_messages": self.duplicate_messages,
            "statuses_applied": self.statuses_applied,
            "placeholders_created": self.placeholders_created,
            "statuses_dropped": self.statuses_dropped,
            "contacts_touched": self.contacts_touched,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class DirectoryResult:
    """Summary of a directory run."""

    files_processed: int = 0
    files_failed: int = 0
    cancelled: bool = False
    results: list[BatchResult] = field(default_factory=list)
    file_errors: dict[str, str] = field(default_factory=dict)

    @property
    def messages_stored(self) -> int:
        return sum(r.messages_stored for r in self.results)

    @property
    def statuses_applied(self) -> int:
        return sum(r.statuses_applied + r.placeholders_created for r in self.results)

    @property
    def item_errors(self) -> int:
        return sum(r.failed_items for r in self.results)


def order_payload_files(paths: list[Path]) -> list[Path]:
    """Non-status files first, then files whose name contains "status"; each by name."""
    return sorted(paths, key=lambda p: ("status" in p.name, p.name))


class WebhookIngestor:
    """Batch orchestrator over the contact ledger, message store and status reconciler."""

    def __init__(
        self,
        settings: IngestSettings,
        ledger: ContactLedger,
        store: MessageStore,
        reconciler: StatusReconciler,
    ) -> None:
        self.settings = settings
        self.ledger = ledger
        self.store = store
        self.reconciler = reconciler

    async def process_payload(self, payload: Any) -> BatchResult:
        """Process one webhook payload.

        Raises:
            MalformedPayloadError: If the top-level shape is invalid. Nothing
                is written in that case.
        """
        changes = list(iter_message_changes(payload))
        payload_id = get_payload_id(payload)
        result = BatchResult(payload_id=payload_id)

        for change in changes:
            primary = change.display_phone_number or self.settings.primary_business_number
            await self._process_contacts(change, result)
            await self._process_messages(change, payload_id, primary, result)
            await self._process_statuses(change, payload_id, primary, result)

        logger.info(
            "payload processed",
            extra={
                "extra_fields": safe_log_context(
                    payload_id=payload_id,
                    processed_items=result.processed_items,
                    messages_stored=result.messages_stored,
                    statuses_applied=result.statuses_applied,
                    placeholders_created=result.placeholders_created,
                    failed_items=result.failed_items,
                )
            },
        )
        return result

    async def process_directory(
        self,
        path: str | Path,
        stop: asyncio.Event | None = None,
    ) -> DirectoryResult:
        """Process every ``*.json`` payload file in a directory.

        Files are handled one at a time; setting ``stop`` ends the run
        between files. A file that cannot be read, parsed or processed is
        counted as failed and the run continues.
        """
        directory = Path(path)
        if not directory.is_dir():
            raise NotADirectoryError(f"not a directory: {directory}")

        files = order_payload_files([p for p in directory.iterdir() if p.suffix == ".json"])
        summary = DirectoryResult()
        logger.info(
            "processing payload directory",
            extra={"extra_fields": safe_log_context(files=len(files))},
        )

        for file_path in files:
            if stop is not None and stop.is_set():
                summary.cancelled = True
                done = summary.files_processed + summary.files_failed
                logger.info(
                    "directory run cancelled",
                    extra={"extra_fields": safe_log_context(remaining=len(files) - done)},
                )
                break

            with correlation_scope(f"file:{file_path.name}"):
                try:
                    payload = json.loads(file_path.read_text(encoding="utf-8"))
                    summary.results.append(await self.process_payload(payload))
                    summary.files_processed += 1
                except (OSError, json.JSONDecodeError, MalformedPayloadError, StorageTransientError) as e:
                    summary.files_failed += 1
                    summary.file_errors[file_path.name] = str(e)
                    logger.error(
                        "payload file failed",
                        extra={
                            "extra_fields": safe_log_context(
                                file=file_path.name,
                                error_type=type(e).__name__,
                                error=str(e),
                            )
                        },
                    )

        return summary

    async def _process_contacts(self, change: MessageChange, result: BatchResult) -> None:
        for raw in change.contacts:
            profile = parse_contact(raw)
            try:
                await self.ledger.upsert_contact(
                    profile.wa_id, profile.display_name, profile.profile_picture
                )
                result.contacts_touched += 1
            except (InvalidWaIdError, StorageTransientError) as e:
                self._record(result, profile.wa_id or None, "contact", e)

    async def _process_messages(
        self,
        change: MessageChange,
        payload_id: str | None,
        primary: str | None,
        result: BatchResult,
    ) -> None:
        size = self.settings.batch_size
        for start in range(0, len(change.messages), size):
            group = change.messages[start : start + size]
            outcomes = await asyncio.gather(
                *(self._process_message(raw, payload_id, primary) for raw in group)
            )
            for raw, outcome in zip(group, outcomes):
                if isinstance(outcome, StoreResult):
                    if outcome.was_new:
                        result.messages_stored += 1
                    else:
                        result.duplicate_messages += 1
                else:
                    self._record(result, _message_id(raw), "message", outcome)

    async def _process_message(
        self,
        raw: dict[str, Any],
        payload_id: str | None,
        primary: str | None,
    ) -> StoreResult | Exception:
        """Normalize and store one message; failures are returned, not raised."""
        message_key = _message_id(raw)
        try:
            new = self._normalize_message(raw, message_key, payload_id, primary)
            # MessageStore retries each storage step once
            return await self.store.store(new)
        except _MESSAGE_ITEM_ERRORS as e:
            return e
        except Exception as e:
            logger.exception(
                "unexpected error processing message",
                extra={"extra_fields": safe_log_context(message_key=message_key)},
            )
            return e

    def _normalize_message(
        self,
        raw: dict[str, Any],
        message_key: str | None,
        payload_id: str | None,
        primary: str | None,
    ) -> NewMessage:
        timestamp = from_unix_timestamp(raw.get("timestamp"))
        resolution = resolve_direction(
            from_number=raw.get("from"),
            to_number=raw.get("to"),
            business_numbers=self.settings.business_numbers,
            primary_business_number=primary,
            conversation_hints=self.settings.conversation_hints,
            context_id=payload_id,
            message_timestamp=timestamp,
        )
        resolved = require_resolved(resolution, message_key)
        content = extract_content(raw)

        supplied_status = str(raw.get("status") or "").lower()
        return NewMessage(
            message_key=message_key or "",
            wa_id=resolved.wa_id,
            from_number=resolved.from_number,
            to_number=resolved.to_number,
            direction=resolved.direction,  # type: ignore[arg-type]
            direction_confidence=resolved.confidence,
            kind=content.kind,
            body=content.body,
            media=content.media,
            timestamp=timestamp or utc_now(),
            status=supplied_status if supplied_status in VALID_STATUSES else None,  # type: ignore[arg-type]
            source_payload_id=payload_id,
        )

    async def _process_statuses(
        self,
        change: MessageChange,
        payload_id: str | None,
        primary: str | None,
        result: BatchResult,
    ) -> None:
        for raw in change.statuses:
            try:
                event = parse_status_event(raw, payload_id)
            except InvalidStatusEventError as e:
                self._record(result, _message_id(raw), "status", e)
                continue

            try:
                reconciled = await self._with_retry(
                    lambda: self.reconciler.apply_status(event, primary_business_number=primary),
                    event,
                )
            except (StorageTransientError, InvalidWaIdError, MessageValidationError) as e:
                self._record(result, event.external_id, "status", e)
                continue
            except Exception as e:
                logger.exception(
                    "unexpected error applying status",
                    extra={"extra_fields": safe_log_context(message_key=event.external_id)},
                )
                self._record(result, event.external_id, "status", e)
                continue

            _count_outcome(result, reconciled)

    async def _with_retry(self, call: Callable[[], Awaitable[T]], event: StatusEvent) -> T:
        """Run call, retrying StorageTransientError with delay attempt x interval."""
        attempts = self.settings.status_retry_attempts
        attempt = 1
        while True:
            try:
                return await call()
            except StorageTransientError as e:
                if attempt >= attempts:
                    logger.error(
                        "status event failed permanently",
                        extra={
                            "extra_fields": safe_log_context(
                                message_key=event.external_id,
                                attempts=attempts,
                                error=str(e),
                            )
                        },
                    )
                    raise
                delay = attempt * self.settings.status_retry_interval
                logger.warning(
                    "status event retry scheduled",
                    extra={
                        "extra_fields": safe_log_context(
                            message_key=event.external_id,
                            attempt=attempt,
                            delay_seconds=delay,
                        )
                    },
                )
                await asyncio.sleep(delay)
                attempt += 1

    def _record(
        self,
        result: BatchResult,
        external_id: str | None,
        stage: ItemStage,
        error: Exception,
    ) -> None:
        item = ItemError(external_id=external_id, stage=stage, message=str(error) or type(error).__name__)
        result.errors.append(item)
        logger.warning(
            "item skipped",
            extra={
                "extra_fields": safe_log_context(
                    external_id=external_id,
                    stage=stage,
                    error_type=type(error).__name__,
                    error=item.message,
                )
            },
        )


def _message_id(raw: dict[str, Any]) -> str | None:
    value = raw.get("id")
    return str(value) if value else None


def _count_outcome(result: BatchResult, reconciled: ReconcileResult) -> None:
    if reconciled.outcome is ReconcileOutcome.APPLIED:
        result.statuses_applied += 1
    elif reconciled.outcome is ReconcileOutcome.PLACEHOLDER_CREATED:
        result.placeholders_created += 1
    elif reconciled.outcome is ReconcileOutcome.PLACEHOLDER_EXISTS:
        result.statuses_applied += 1
    else:
        result.statuses_dropped += 1


def build_ingestor(
    settings: IngestSettings | None = None,
    *,
    messages: MessageRepository | None = None,
    contacts: ContactRepository | None = None,
) -> WebhookIngestor:
    """Wire an ingestor from settings (env by default) and the configured backend."""
    settings = settings or IngestSettings.from_env()
    if messages is None or contacts is None:
        messages, contacts = build_repositories(settings.storage_backend)
    ledger = ContactLedger(contacts)
    store = MessageStore(messages, ledger)
    reconciler = StatusReconciler(
        messages, store, ledger, primary_business_number=settings.primary_business_number
    )
    return WebhookIngestor(settings, ledger, store, reconciler)
