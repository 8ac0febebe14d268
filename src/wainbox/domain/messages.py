"""Message store - idempotent storage keyed by the external message id.

A message is created once, on first sight of its key. Any later store of
the same key is a no-op that returns the existing record; duplicate-key
races resolve in storage (ON CONFLICT DO NOTHING), so nothing here raises
for duplicates.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from wainbox.infra.hashing import hash_identifier
from wainbox.infra.repositories.base import MessageRepository, StorageTransientError
from wainbox.infra.time import utc_now
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context
from wainbox.whatsapp.models import Message, MessageStatus, NewMessage, StatusChange
from wainbox.whatsapp.phone import require_wa_id
from wainbox.whatsapp.text import MAX_MESSAGE_LENGTH, truncate

from .contacts import ContactLedger

logger = get_logger(__name__)

MESSAGE_KEY_MIN_LENGTH = 3

T = TypeVar("T")


class MessageValidationError(Exception):
    """Raised when a message cannot be stored as given."""

    pass


@dataclass(frozen=True)
class StoreResult:
    """Outcome of MessageStore.store()."""

    message: Message
    was_new: bool


def initial_status(new: NewMessage) -> MessageStatus:
    """Status a message starts in when first stored.

    An explicit status wins. Otherwise outgoing messages start as "sent"
    and incoming ones as "delivered".
    """
    if new.status is not None:
        return new.status
    return "sent" if new.direction == "outgoing" else "delivered"


class MessageStore:
    """Stores normalized messages and keeps the contact ledger in step."""

    def __init__(self, repository: MessageRepository, ledger: ContactLedger) -> None:
        self._repository = repository
        self._ledger = ledger

    async def get(self, message_key: str) -> Message | None:
        return await self._repository.get(message_key)

    async def store(self, new: NewMessage, *, record_activity: bool = True) -> StoreResult:
        """Store a message unless its key is already known.

        The contact is ensured before the message is written. On a new
        store the contact's aggregates are updated (unread +1 for incoming).

        Args:
            new: Normalized message.
            record_activity: Fold the message into the contact's aggregates.
                Placeholders pass False.

        Returns:
            StoreResult with the stored (or pre-existing) message.

        Raises:
            MessageValidationError: If the message key is missing or too short.
            InvalidWaIdError: If the waId is not valid.
            StorageTransientError: On storage I/O failure.
        """
        message_key = (new.message_key or "").strip()
        if len(message_key) < MESSAGE_KEY_MIN_LENGTH:
            raise MessageValidationError(
                f"message key must be at least {MESSAGE_KEY_MIN_LENGTH} characters"
            )
        wa_id = require_wa_id(new.wa_id)

        existing = await _retry_once(lambda: self._repository.get(message_key))
        if existing is not None:
            return StoreResult(existing, was_new=False)

        await _retry_once(lambda: self._ledger.ensure_contact(wa_id))

        now = utc_now()
        status = initial_status(new)
        message = Message(
            message_key=message_key,
            wa_id=wa_id,
            from_number=new.from_number,
            to_number=new.to_number,
            direction=new.direction,
            direction_confidence=new.direction_confidence,
            kind=new.kind,
            body=truncate(new.body, MAX_MESSAGE_LENGTH),
            status=status,
            timestamp=new.timestamp,
            created_at=now,
            media=new.media,
            status_timestamps={status: now},
            status_history=(StatusChange(None, status, now, new.source_payload_id),),
            alternate_key=new.alternate_key,
            source_payload_id=new.source_payload_id,
            is_placeholder=new.is_placeholder,
        )

        stored, created = await _retry_once(lambda: self._repository.insert_if_absent(message))
        if not created and stored.created_at != message.created_at:
            # Lost a concurrent insert race for the same key. A row carrying
            # our own created_at is a first attempt that committed before
            # the connection dropped.
            return StoreResult(stored, was_new=False)

        if record_activity:
            await _retry_once(
                lambda: self._ledger.record_message(
                    wa_id,
                    preview=stored.body,
                    at=stored.timestamp,
                    unread_delta=0 if stored.is_outgoing else 1,
                )
            )

        logger.info(
            "message stored",
            extra={
                "extra_fields": safe_log_context(
                    message_key=message_key,
                    contact_hash=hash_identifier(wa_id),
                    direction=stored.direction,
                    confidence=stored.direction_confidence,
                    kind=stored.kind,
                    status=stored.status,
                    placeholder=stored.is_placeholder,
                )
            },
        )
        return StoreResult(stored, was_new=True)


async def _retry_once(call: Callable[[], Awaitable[T]]) -> T:
    """Run one storage step, repeating it once on StorageTransientError.

    Each step is retried on its own, so a failed counter update never
    turns an insert that already committed into a duplicate.
    """
    try:
        return await call()
    except StorageTransientError as e:
        logger.warning(
            "storage step retried",
            extra={"extra_fields": safe_log_context(error=str(e))},
        )
        return await call()
