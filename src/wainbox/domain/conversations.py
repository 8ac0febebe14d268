"""Conversation side - inbox queries, search and stats, contact actions.

NO phone numbers in logs. Only hashes.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from wainbox.infra.hashing import hash_identifier
from wainbox.infra.repositories.base import MessageRepository
from wainbox.infra.time import utc_now
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context
from wainbox.whatsapp.models import Contact, Message, MessageKind, MessageStatus
from wainbox.whatsapp.phone import format_phone_for_display, require_wa_id
from wainbox.whatsapp.text import message_preview

from .contacts import ContactLedger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200

DEFAULT_SEARCH_LIMIT = 20

# A contact counts as active in stats if it had a message this recently
ACTIVE_CONTACT_WINDOW = timedelta(days=7)

DEFAULT_BLOCK_REASON = "manual"


@dataclass(frozen=True)
class ConversationSummary:
    """One row of the inbox."""

    contact: Contact
    unread_count: int

    def to_dict(self) -> dict[str, Any]:
        data = self.contact.to_dict()
        data["unread_count"] = self.unread_count
        data["display_phone"] = format_phone_for_display(self.contact.wa_id)
        data["preview"] = message_preview(self.contact.last_message_preview)
        return data


@dataclass(frozen=True)
class MarkReadResult:
    wa_id: str
    messages_marked: int
    contact: Contact | None


@dataclass(frozen=True)
class InboxStats:
    """Message and contact totals for GET /stats."""

    total_messages: int
    messages_today: int
    unread_messages: int
    total_contacts: int
    active_contacts: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": {
                "total": self.total_messages,
                "today": self.messages_today,
                "unread": self.unread_messages,
            },
            "contacts": {
                "total": self.total_contacts,
                "active": self.active_contacts,
            },
        }


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


class ConversationService:
    """Queries and explicit actions used by the HTTP layer."""

    def __init__(self, messages: MessageRepository, ledger: ContactLedger) -> None:
        self._messages = messages
        self._ledger = ledger

    async def list_conversations(self, *, limit: int = 50, offset: int = 0) -> list[ConversationSummary]:
        """Active, unblocked contacts, most recent message first.

        unread_count is the stored aggregate, which mark-read and read
        receipts reset.
        """
        limit, offset = _page(limit, offset)
        contacts = await self._ledger.list_active(limit=limit, offset=offset)
        return [ConversationSummary(contact, contact.unread_count) for contact in contacts]

    async def get_messages(
        self,
        wa_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        kind: MessageKind | None = None,
        status: MessageStatus | None = None,
    ) -> list[Message]:
        """Messages of one conversation, oldest first."""
        wa_id = require_wa_id(wa_id)
        limit, offset = _page(limit, offset)
        return await self._messages.list_for_conversation(
            wa_id, limit=limit, offset=offset, kind=kind, status=status
        )

    async def count_unread(self, wa_id: str) -> int:
        """Incoming messages not yet read, counted from the message log."""
        return await self._messages.count_unread(require_wa_id(wa_id))

    async def mark_conversation_read(self, wa_id: str) -> MarkReadResult:
        """Reset the contact's unread count and move unread incoming messages to "read"."""
        wa_id = require_wa_id(wa_id)
        marked = await self._messages.mark_incoming_read(wa_id, utc_now())
        contact = await self._ledger.reset_unread(wa_id)
        logger.info(
            "conversation marked read",
            extra={
                "extra_fields": safe_log_context(
                    contact_hash=hash_identifier(wa_id),
                    messages_marked=marked,
                )
            },
        )
        return MarkReadResult(wa_id=wa_id, messages_marked=marked, contact=contact)

    async def add_contact(
        self,
        wa_id: str,
        display_name: str | None = None,
        profile_picture: str | None = None,
    ) -> Contact:
        """Create (or refresh) a contact explicitly.

        A new contact without a name is called "Contact <waId>".
        """
        wa_id = require_wa_id(wa_id)
        name = (display_name or "").strip()
        if not name and await self._ledger.get(wa_id) is None:
            name = f"Contact {wa_id}"
        return await self._ledger.upsert_contact(wa_id, name or None, profile_picture)

    async def search_messages(
        self,
        query: str,
        *,
        wa_id: str | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[Message]:
        """Messages whose body contains ``query``, newest first.

        Matching is case-insensitive. A blank query matches nothing.

        Raises:
            InvalidWaIdError: If wa_id is given and not a valid waId.
        """
        query = query.strip()
        if wa_id is not None:
            wa_id = require_wa_id(wa_id)
        if not query:
            return []
        limit, _ = _page(limit, 0)
        return await self._messages.search(query, wa_id=wa_id, limit=limit)

    async def search_contacts(self, query: str, *, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Contact]:
        """Active, unblocked contacts whose name or waId contains ``query``."""
        query = query.strip()
        if not query:
            return []
        limit, _ = _page(limit, 0)
        return await self._ledger.search(query, limit=limit)

    async def get_stats(self) -> InboxStats:
        """Totals over the whole inbox. "Today" starts at UTC midnight."""
        now = utc_now()
        return InboxStats(
            total_messages=await self._messages.count_messages(),
            messages_today=await self._messages.count_messages(since=start_of_day(now)),
            unread_messages=await self._messages.count_all_unread(),
            total_contacts=await self._ledger.count_active(),
            active_contacts=await self._ledger.count_active(messaged_since=now - ACTIVE_CONTACT_WINDOW),
        )

    async def block_contact(self, wa_id: str, reason: str | None = None) -> Contact | None:
        """Hide a contact from the inbox and contact search. Returns None if unknown."""
        reason = (reason or "").strip() or DEFAULT_BLOCK_REASON
        return await self._ledger.set_blocked(wa_id, True, reason)

    async def unblock_contact(self, wa_id: str) -> Contact | None:
        return await self._ledger.set_blocked(wa_id, False)
