"""Repository contracts shared by the PostgreSQL and in-memory backends.

All methods are coroutines. Implementations must make single-key writes
atomic: concurrent inserts of the same ``message_key`` or ``wa_id`` resolve
to one row, and counters are incremented in storage, not read-modified-
written by the caller.
"""

from datetime import datetime
from typing import Protocol

from wainbox.whatsapp.models import Contact, Message, MessageKind, MessageStatus


class StorageTransientError(Exception):
    """Raised for I/O failures that may succeed on retry (connection lost, timeout)."""

    pass


class MessageRepository(Protocol):
    """Persistence for the conversation-scoped message log."""

    async def get(self, message_key: str) -> Message | None:
        """Fetch a message by key."""
        ...

    async def insert_if_absent(self, message: Message) -> tuple[Message, bool]:
        """Insert unless the key exists.

        Returns:
            (stored message, created). On conflict the existing row is
            returned with created=False; duplicates never raise.
        """
        ...

    async def apply_status(
        self,
        message_key: str,
        status: MessageStatus,
        observed_at: datetime,
        *,
        source_payload_id: str | None = None,
        alternate_key: str | None = None,
        error_reason: str | None = None,
    ) -> Message | None:
        """Record a status observation under a row lock.

        Appends to the history, moves ``status`` per
        ``resolve_transition``, sets the status timestamp only if unset.

        Returns:
            Updated message, or None if the key is unknown.
        """
        ...

    async def mark_incoming_read(self, wa_id: str, observed_at: datetime) -> int:
        """Move every unread incoming message of a conversation to "read".

        Returns:
            Number of messages updated.
        """
        ...

    async def list_for_conversation(
        self,
        wa_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        kind: MessageKind | None = None,
        status: MessageStatus | None = None,
    ) -> list[Message]:
        """Messages of one conversation, oldest first."""
        ...

    async def count_unread(self, wa_id: str) -> int:
        """Incoming messages of a conversation not yet read."""
        ...

    async def search(self, query: str, *, wa_id: str | None = None, limit: int = 20) -> list[Message]:
        """Messages whose body contains ``query`` (case-insensitive), newest first."""
        ...

    async def count_messages(self, *, since: datetime | None = None) -> int:
        """Messages in the log, optionally only those timestamped at or after ``since``."""
        ...

    async def count_all_unread(self) -> int:
        """Incoming messages not yet read, across every conversation."""
        ...


class ContactRepository(Protocol):
    """Persistence for the contact roster and its rolling aggregates."""

    async def get(self, wa_id: str) -> Contact | None:
        ...

    async def upsert_profile(
        self,
        wa_id: str,
        *,
        display_name: str | None,
        profile_picture: str | None,
        now: datetime,
    ) -> Contact:
        """Create the contact or refresh its profile; sets is_active.

        A None display name or picture keeps the stored value. New contacts
        without a name are named after their waId.
        """
        ...

    async def record_message(
        self,
        wa_id: str,
        *,
        preview: str,
        message_at: datetime,
        unread_delta: int,
        unread_max: int,
        now: datetime,
    ) -> Contact:
        """Atomically bump aggregates for one new message (creating the contact if needed)."""
        ...

    async def reset_unread(self, wa_id: str, now: datetime) -> Contact | None:
        """Set unread_count to 0. Returns None if the contact is unknown."""
        ...

    async def list_active(self, *, limit: int = 50, offset: int = 0) -> list[Contact]:
        """Active, unblocked contacts, most recent message first (never-messaged last)."""
        ...

    async def search(self, query: str, *, limit: int = 20) -> list[Contact]:
        """Active, unblocked contacts whose name or waId contains ``query``.

        Case-insensitive; most recent message first.
        """
        ...

    async def set_blocked(
        self,
        wa_id: str,
        *,
        blocked: bool,
        reason: str | None,
        now: datetime,
    ) -> Contact | None:
        """Block or unblock a contact. Returns None if the contact is unknown."""
        ...

    async def count_active(self, *, messaged_since: datetime | None = None) -> int:
        """Active contacts, optionally only those with a message at or after ``messaged_since``."""
        ...
