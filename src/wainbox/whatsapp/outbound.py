"""Outbound WhatsApp messaging - local simulation only.

Nothing is transmitted. A "sent" outgoing text message is written to the
message store as if the provider had accepted it.

Security: NEVER log the recipient or the text. Only log hashes and lengths.
"""

import os
import secrets

from wainbox.domain.contacts import ContactLedger
from wainbox.domain.messages import MessageStore, MessageValidationError, StoreResult
from wainbox.infra.hashing import hash_identifier
from wainbox.infra.time import to_epoch_millis, utc_now
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context

from .direction import CONFIDENCE_EXPLICIT
from .models import NewMessage
from .phone import normalize_digits, require_wa_id
from .text import sanitize_message_text

logger = get_logger(__name__)


def generate_message_key(prefix: str = "msg") -> str:
    """Build a unique key: ``<prefix>_<epochMillis>_<12 hex>_<NODE_ID>``.

    NODE_ID (default "node1") keeps keys distinct across instances.
    """
    node_id = os.environ.get("NODE_ID") or "node1"
    return f"{prefix}_{to_epoch_millis(utc_now())}_{secrets.token_hex(6)}_{node_id}"


async def send_text_locally(
    store: MessageStore,
    ledger: ContactLedger,
    *,
    wa_id: str,
    text: str,
    business_number: str | None,
) -> StoreResult:
    """Store an outgoing text message as sent and clear the contact's unread count.

    Args:
        store: Message store.
        ledger: Contact ledger.
        wa_id: Recipient. NEVER logged.
        text: Message text. NEVER logged.
        business_number: Sender number.

    Raises:
        InvalidWaIdError: If wa_id is not valid.
        MessageValidationError: If text is empty or no business number is set.
    """
    wa_id = require_wa_id(wa_id)
    body = sanitize_message_text(text)
    if not body:
        raise MessageValidationError("message text is required")
    sender = normalize_digits(business_number)
    if not sender:
        raise MessageValidationError("no business number configured for outgoing messages")

    if await ledger.get(wa_id) is None:
        await ledger.upsert_contact(wa_id, f"Contact {wa_id}")

    result = await store.store(
        NewMessage(
            message_key=generate_message_key(),
            wa_id=wa_id,
            from_number=sender,
            to_number=wa_id,
            direction="outgoing",
            direction_confidence=CONFIDENCE_EXPLICIT,
            kind="text",
            body=body,
            timestamp=utc_now(),
            status="sent",
        )
    )
    await ledger.reset_unread(wa_id)

    logger.info(
        "outgoing message stored (local send)",
        extra={
            "extra_fields": safe_log_context(
                message_key=result.message.message_key,
                contact_hash=hash_identifier(wa_id),
                text_len=len(body),
            )
        },
    )
    return result
