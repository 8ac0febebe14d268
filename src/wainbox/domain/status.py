"""Status reconciler - apply delivery/read/failed events to stored messages.

Status events may arrive before (or without) the message they refer to.
Lookup tries the event id, then the alternate id. An unknown message gets a
placeholder record in the event's status, unless the event is a failure,
which is dropped.
"""

from dataclasses import dataclass
from enum import Enum

from wainbox.infra.hashing import hash_identifier
from wainbox.infra.repositories.base import MessageRepository
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context
from wainbox.whatsapp.direction import CONFIDENCE_EXPLICIT
from wainbox.whatsapp.models import Message, NewMessage, StatusEvent
from wainbox.whatsapp.phone import is_valid_wa_id

from .contacts import ContactLedger
from .messages import MessageStore

logger = get_logger(__name__)

PLACEHOLDER_BODY = "[Message content not available — status only]"


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    PLACEHOLDER_CREATED = "placeholder_created"
    PLACEHOLDER_EXISTS = "placeholder_exists"
    DROPPED = "dropped"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    message: Message | None = None
    reason: str | None = None


class StatusReconciler:
    """Applies StatusEvents through the message repository."""

    def __init__(
        self,
        repository: MessageRepository,
        store: MessageStore,
        ledger: ContactLedger,
        primary_business_number: str | None = None,
    ) -> None:
        self._repository = repository
        self._store = store
        self._ledger = ledger
        self._primary_business_number = primary_business_number

    async def apply_status(
        self,
        event: StatusEvent,
        *,
        primary_business_number: str | None = None,
    ) -> ReconcileResult:
        """Apply one status event.

        Args:
            event: Parsed status event.
            primary_business_number: Business number of the payload, used as
                the placeholder's sender. Falls back to the configured one.

        Returns:
            ReconcileResult describing what happened.

        Raises:
            StorageTransientError: On storage I/O failure (caller retries).
        """
        updated = await self._apply_to_known(event)
        if updated is not None:
            if event.status == "read" and updated.is_outgoing:
                await self._ledger.reset_unread(updated.wa_id)
            logger.info(
                "status applied",
                extra={
                    "extra_fields": safe_log_context(
                        message_key=updated.message_key,
                        status=event.status,
                        current_status=updated.status,
                    )
                },
            )
            return ReconcileResult(ReconcileOutcome.APPLIED, updated)

        if event.status == "failed":
            return self._drop(event, "failed status for unknown message")

        wa_id = event.recipient_id or ""
        if not is_valid_wa_id(wa_id):
            return self._drop(event, "unknown message and no usable recipient_id")

        return await self._create_placeholder(
            event,
            wa_id,
            primary_business_number or self._primary_business_number or wa_id,
        )

    async def _apply_to_known(self, event: StatusEvent) -> Message | None:
        kwargs = {
            "source_payload_id": event.source_payload_id,
            "error_reason": event.error_message,
        }
        updated = await self._repository.apply_status(
            event.external_id,
            event.status,
            event.observed_at,
            alternate_key=event.alternate_id,
            **kwargs,
        )
        if updated is None and event.alternate_id and event.alternate_id != event.external_id:
            updated = await self._repository.apply_status(
                event.alternate_id,
                event.status,
                event.observed_at,
                **kwargs,
            )
        return updated

    async def _create_placeholder(
        self, event: StatusEvent, wa_id: str, from_number: str
    ) -> ReconcileResult:
        placeholder = NewMessage(
            message_key=event.external_id,
            wa_id=wa_id,
            from_number=from_number,
            to_number=wa_id,
            direction="outgoing",
            direction_confidence=CONFIDENCE_EXPLICIT,
            kind="text",
            body=PLACEHOLDER_BODY,
            timestamp=event.observed_at,
            status=event.status,
            alternate_key=event.alternate_id,
            source_payload_id=event.source_payload_id,
            is_placeholder=True,
        )
        result = await self._store.store(placeholder, record_activity=False)
        if not result.was_new:
            # Created concurrently; same as a duplicate message
            return ReconcileResult(ReconcileOutcome.PLACEHOLDER_EXISTS, result.message)

        logger.warning(
            "placeholder created for status of unknown message",
            extra={
                "extra_fields": safe_log_context(
                    message_key=event.external_id,
                    status=event.status,
                    contact_hash=hash_identifier(wa_id),
                )
            },
        )
        return ReconcileResult(ReconcileOutcome.PLACEHOLDER_CREATED, result.message)

    def _drop(self, event: StatusEvent, reason: str) -> ReconcileResult:
        logger.info(
            "status event dropped",
            extra={
                "extra_fields": safe_log_context(
                    message_key=event.external_id,
                    status=event.status,
                    reason=reason,
                )
            },
        )
        return ReconcileResult(ReconcileOutcome.DROPPED, reason=reason)
