"""Contact ledger - conversation partners and their rolling aggregates.

Every stored message has a contact with the same waId. The ledger creates
contacts on first reference and bumps aggregates atomically in storage
(never read-modify-write here).
"""

from datetime import datetime

from wainbox.infra.hashing import hash_identifier
from wainbox.infra.repositories.base import ContactRepository
from wainbox.infra.time import utc_now
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context
from wainbox.whatsapp.models import Contact
from wainbox.whatsapp.phone import require_wa_id
from wainbox.whatsapp.text import truncate

logger = get_logger(__name__)

# Upper bound for unread_count
UNREAD_COUNT_MAX = 9999

# Longest last_message_preview kept on a contact
PREVIEW_MAX_LENGTH = 1000


class ContactLedger:
    """Upserts contacts and maintains their message statistics."""

    def __init__(self, repository: ContactRepository) -> None:
        self._repository = repository

    async def get(self, wa_id: str) -> Contact | None:
        return await self._repository.get(require_wa_id(wa_id))

    async def upsert_contact(
        self,
        wa_id: str,
        display_name: str | None = None,
        profile_picture: str | None = None,
    ) -> Contact:
        """Create the contact or refresh its profile.

        Raises:
            InvalidWaIdError: If wa_id is not a valid waId.
        """
        wa_id = require_wa_id(wa_id)
        contact = await self._repository.upsert_profile(
            wa_id,
            display_name=(display_name or "").strip() or None,
            profile_picture=profile_picture or None,
            now=utc_now(),
        )
        logger.info(
            "contact upserted",
            extra={
                "extra_fields": safe_log_context(
                    contact_hash=hash_identifier(wa_id),
                    total_messages=contact.total_message_count,
                )
            },
        )
        return contact

    async def ensure_contact(self, wa_id: str) -> Contact:
        """Return the contact, creating a bare one if it does not exist yet."""
        wa_id = require_wa_id(wa_id)
        existing = await self._repository.get(wa_id)
        if existing is not None:
            return existing
        return await self._repository.upsert_profile(
            wa_id, display_name=None, profile_picture=None, now=utc_now()
        )

    async def record_message(
        self,
        wa_id: str,
        preview: str,
        at: datetime,
        unread_delta: int,
    ) -> Contact:
        """Fold one new message into the contact's aggregates.

        Args:
            wa_id: Conversation partner.
            preview: Message body; truncated to PREVIEW_MAX_LENGTH.
            at: Message time, becomes last_message_at.
            unread_delta: 1 for incoming, 0 for outgoing.
        """
        wa_id = require_wa_id(wa_id)
        return await self._repository.record_message(
            wa_id,
            preview=truncate(preview, PREVIEW_MAX_LENGTH),
            message_at=at,
            unread_delta=max(0, unread_delta),
            unread_max=UNREAD_COUNT_MAX,
            now=utc_now(),
        )

    async def reset_unread(self, wa_id: str) -> Contact | None:
        """Set unread_count to 0. Returns None if the contact is unknown."""
        wa_id = require_wa_id(wa_id)
        contact = await self._repository.reset_unread(wa_id, utc_now())
        if contact is not None:
            logger.info(
                "unread count reset",
                extra={"extra_fields": safe_log_context(contact_hash=hash_identifier(wa_id))},
            )
        return contact

    async def list_active(self, *, limit: int = 50, offset: int = 0) -> list[Contact]:
        return await self._repository.list_active(limit=limit, offset=offset)

    async def search(self, query: str, *, limit: int = 20) -> list[Contact]:
        return await self._repository.search(query, limit=limit)

    async def set_blocked(self, wa_id: str, blocked: bool, reason: str | None = None) -> Contact | None:
        """Block or unblock a contact. Blocked contacts leave the inbox but keep their history.

        Returns None if the contact is unknown.
        """
        wa_id = require_wa_id(wa_id)
        contact = await self._repository.set_blocked(
            wa_id, blocked=blocked, reason=reason, now=utc_now()
        )
        if contact is not None:
            logger.info(
                "contact blocked" if blocked else "contact unblocked",
                extra={
                    "extra_fields": safe_log_context(
                        contact_hash=hash_identifier(wa_id),
                        reason=reason if blocked else None,
                    )
                },
            )
        return contact

    async def count_active(self, *, messaged_since: datetime | None = None) -> int:
        return await self._repository.count_active(messaged_since=messaged_since)
