"""In-memory repositories (STORAGE_BACKEND=memory).

Used by tests and local runs. A single asyncio.Lock per repository makes
every write atomic within one event loop; records are immutable dataclasses
so readers never observe a half-applied update.
"""

import asyncio
from dataclasses import replace
from datetime import datetime

from wainbox.whatsapp.models import (
    Contact,
    Message,
    MessageKind,
    MessageStatus,
    StatusChange,
    resolve_transition,
)


class InMemoryMessageRepository:
    """Message log held in a dict keyed by message_key."""

    def __init__(self) -> None:
        self._messages: dict[str, Message] = {}
        self._lock = asyncio.Lock()

    async def get(self, message_key: str) -> Message | None:
        return self._messages.get(message_key)

    async def insert_if_absent(self, message: Message) -> tuple[Message, bool]:
        async with self._lock:
            existing = self._messages.get(message.message_key)
            if existing is not None:
                return existing, False
            self._messages[message.message_key] = message
            return message, True

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
        async with self._lock:
            current = self._messages.get(message_key)
            if current is None:
                return None
            if current.repeats_last_observation(status, observed_at, source_payload_id):
                return current

            timestamps = dict(current.status_timestamps)
            timestamps.setdefault(status, observed_at)

            updated = replace(
                current,
                status=resolve_transition(current.status, status),
                status_timestamps=timestamps,
                status_history=current.status_history
                + (StatusChange(current.status, status, observed_at, source_payload_id),),
                alternate_key=current.alternate_key or alternate_key,
                error_reason=error_reason if status == "failed" and error_reason else current.error_reason,
            )
            self._messages[message_key] = updated
            return updated

    async def mark_incoming_read(self, wa_id: str, observed_at: datetime) -> int:
        async with self._lock:
            updated = 0
            for key, message in list(self._messages.items()):
                if message.wa_id != wa_id or message.direction != "incoming" or message.status == "read":
                    continue
                timestamps = dict(message.status_timestamps)
                timestamps.setdefault("read", observed_at)
                self._messages[key] = replace(
                    message,
                    status="read",
                    status_timestamps=timestamps,
                    status_history=message.status_history
                    + (StatusChange(message.status, "read", observed_at),),
                )
                updated += 1
            return updated

    async def list_for_conversation(
        self,
        wa_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        kind: MessageKind | None = None,
        status: MessageStatus | None = None,
    ) -> list[Message]:
        matches = [
            m
            for m in self._messages.values()
            if m.wa_id == wa_id
            and (kind is None or m.kind == kind)
            and (status is None or m.status == status)
        ]
        matches.sort(key=lambda m: (m.timestamp, m.created_at, m.message_key))
        return matches[offset : offset + limit]

    async def count_unread(self, wa_id: str) -> int:
        return sum(
            1
            for m in self._messages.values()
            if m.wa_id == wa_id and m.direction == "incoming" and m.status != "read"
        )

    async def search(self, query: str, *, wa_id: str | None = None, limit: int = 20) -> list[Message]:
        needle = query.lower()
        matches = [
            m
            for m in self._messages.values()
            if needle in m.body.lower() and (wa_id is None or m.wa_id == wa_id)
        ]
        matches.sort(key=lambda m: (m.timestamp, m.created_at, m.message_key), reverse=True)
        return matches[:limit]

    async def count_messages(self, *, since: datetime | None = None) -> int:
        return sum(1 for m in self._messages.values() if since is None or m.timestamp >= since)

    async def count_all_unread(self) -> int:
        return sum(
            1 for m in self._messages.values() if m.direction == "incoming" and m.status != "read"
        )

    def clear(self) -> None:
        """Drop everything (useful for testing)."""
        self._messages.clear()


class InMemoryContactRepository:
    """Contact roster held in a dict keyed by wa_id."""

    def __init__(self) -> None:
        self._contacts: dict[str, Contact] = {}
        self._lock = asyncio.Lock()

    async def get(self, wa_id: str) -> Contact | None:
        return self._contacts.get(wa_id)

    def _new_contact(self, wa_id: str, now: datetime, display_name: str | None = None) -> Contact:
        return Contact(
            wa_id=wa_id,
            display_name=display_name or wa_id,
            created_at=now,
            last_activity_at=now,
        )

    async def upsert_profile(
        self,
        wa_id: str,
        *,
        display_name: str | None,
        profile_picture: str | None,
        now: datetime,
    ) -> Contact:
        async with self._lock:
            current = self._contacts.get(wa_id) or self._new_contact(wa_id, now, display_name)
            updated = replace(
                current,
                display_name=display_name or current.display_name,
                profile_picture=profile_picture or current.profile_picture,
                is_active=True,
            )
            self._contacts[wa_id] = updated
            return updated

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
        async with self._lock:
            current = self._contacts.get(wa_id) or self._new_contact(wa_id, now)
            updated = replace(
                current,
                last_message_preview=preview,
                last_message_at=message_at,
                total_message_count=current.total_message_count + 1,
                unread_count=max(0, min(current.unread_count + unread_delta, unread_max)),
                first_message_at=current.first_message_at or message_at,
                last_activity_at=now,
                is_active=True,
            )
            self._contacts[wa_id] = updated
            return updated

    async def reset_unread(self, wa_id: str, now: datetime) -> Contact | None:
        async with self._lock:
            current = self._contacts.get(wa_id)
            if current is None:
                return None
            updated = replace(current, unread_count=0, last_activity_at=now)
            self._contacts[wa_id] = updated
            return updated

    def _visible(self, needle: str = "") -> list[Contact]:
        visible = [
            c
            for c in self._contacts.values()
            if c.is_active
            and not c.is_blocked
            and (needle in c.display_name.lower() or needle in c.wa_id)
        ]
        # Most recent message first; never-messaged contacts last, newest first
        visible.sort(
            key=lambda c: (
                c.last_message_at is not None,
                c.last_message_at or c.created_at,
            ),
            reverse=True,
        )
        return visible

    async def list_active(self, *, limit: int = 50, offset: int = 0) -> list[Contact]:
        return self._visible()[offset : offset + limit]

    async def search(self, query: str, *, limit: int = 20) -> list[Contact]:
        return self._visible(query.lower())[:limit]

    async def set_blocked(
        self,
        wa_id: str,
        *,
        blocked: bool,
        reason: str | None,
        now: datetime,
    ) -> Contact | None:
        async with self._lock:
            current = self._contacts.get(wa_id)
            if current is None:
                return None
            updated = replace(
                current,
                is_blocked=blocked,
                block_reason=reason if blocked else None,
                last_activity_at=now,
            )
            self._contacts[wa_id] = updated
            return updated

    async def count_active(self, *, messaged_since: datetime | None = None) -> int:
        return sum(
            1
            for c in self._contacts.values()
            if c.is_active
            and (
                messaged_since is None
                or (c.last_message_at is not None and c.last_message_at >= messaged_since)
            )
        )

    def clear(self) -> None:
        """Drop everything (useful for testing)."""
        self._contacts.clear()
