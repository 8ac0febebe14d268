"""Contact repository - PostgreSQL contact roster.

Uses raw SQL with psycopg2 (no ORM). Aggregates are updated by a single
INSERT ... ON CONFLICT DO UPDATE so concurrent writers never lose an
increment.
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wainbox.infra.db import contains_pattern, fetchall, fetchone, run_sync, txn
from wainbox.whatsapp.models import Contact

_COLUMNS = """
    wa_id, display_name, profile_picture, last_message_preview, last_message_at,
    unread_count, total_message_count, first_message_at, last_activity_at,
    is_active, is_blocked, created_at, block_reason
"""


def _row_to_contact(row: tuple[Any, ...]) -> Contact:
    return Contact(
        wa_id=row[0],
        display_name=row[1],
        profile_picture=row[2],
        last_message_preview=row[3],
        last_message_at=row[4],
        unread_count=row[5],
        total_message_count=row[6],
        first_message_at=row[7],
        last_activity_at=row[8],
        is_active=row[9],
        is_blocked=row[10],
        created_at=row[11],
        block_reason=row[12],
    )


def get_contact(cur: PgCursor, wa_id: str) -> Contact | None:
    row = fetchone(cur, f"SELECT {_COLUMNS} FROM contacts WHERE wa_id = %s", (wa_id,))
    return _row_to_contact(row) if row else None


def upsert_profile(
    cur: PgCursor,
    wa_id: str,
    *,
    display_name: str | None,
    profile_picture: str | None,
    now: datetime,
) -> Contact:
    cur.execute(
        f"""
        INSERT INTO contacts (wa_id, display_name, profile_picture, last_activity_at, created_at, updated_at)
        VALUES (%s, COALESCE(%s, %s), %s, %s, %s, %s)
        ON CONFLICT (wa_id) DO UPDATE
        SET display_name = COALESCE(%s, contacts.display_name),
            profile_picture = COALESCE(EXCLUDED.profile_picture, contacts.profile_picture),
            is_active = TRUE,
            updated_at = EXCLUDED.updated_at
        RETURNING {_COLUMNS}
        """,
        (wa_id, display_name, wa_id, profile_picture, now, now, now, display_name),
    )
    return _row_to_contact(cur.fetchone())


def record_message(
    cur: PgCursor,
    wa_id: str,
    *,
    preview: str,
    message_at: datetime,
    unread_delta: int,
    unread_max: int,
    now: datetime,
) -> Contact:
    cur.execute(
        f"""
        INSERT INTO contacts (
            wa_id, display_name, last_message_preview, last_message_at,
            unread_count, total_message_count, first_message_at,
            last_activity_at, created_at, updated_at
        )
        VALUES (%s, %s, %s, %s, LEAST(GREATEST(%s, 0), %s), 1, %s, %s, %s, %s)
        ON CONFLICT (wa_id) DO UPDATE
        SET last_message_preview = EXCLUDED.last_message_preview,
            last_message_at = EXCLUDED.last_message_at,
            unread_count = LEAST(GREATEST(contacts.unread_count + %s, 0), %s),
            total_message_count = contacts.total_message_count + 1,
            first_message_at = COALESCE(contacts.first_message_at, EXCLUDED.first_message_at),
            last_activity_at = EXCLUDED.last_activity_at,
            is_active = TRUE,
            updated_at = EXCLUDED.updated_at
        RETURNING {_COLUMNS}
        """,
        (
            wa_id,
            wa_id,
            preview,
            message_at,
            unread_delta,
            unread_max,
            message_at,
            now,
            now,
            now,
            unread_delta,
            unread_max,
        ),
    )
    return _row_to_contact(cur.fetchone())


def reset_unread(cur: PgCursor, wa_id: str, now: datetime) -> Contact | None:
    cur.execute(
        f"""
        UPDATE contacts
        SET unread_count = 0, last_activity_at = %s, updated_at = %s
        WHERE wa_id = %s
        RETURNING {_COLUMNS}
        """,
        (now, now, wa_id),
    )
    row = cur.fetchone()
    return _row_to_contact(row) if row else None


def list_active(cur: PgCursor, *, limit: int, offset: int) -> list[Contact]:
    rows = fetchall(
        cur,
        f"""
        SELECT {_COLUMNS} FROM contacts
        WHERE is_active AND NOT is_blocked
        ORDER BY last_message_at DESC NULLS LAST, created_at DESC
        LIMIT %s OFFSET %s
        """,
        (limit, offset),
    )
    return [_row_to_contact(row) for row in rows]


def search_contacts(cur: PgCursor, query: str, *, limit: int) -> list[Contact]:
    pattern = contains_pattern(query)
    rows = fetchall(
        cur,
        f"""
        SELECT {_COLUMNS} FROM contacts
        WHERE is_active AND NOT is_blocked
          AND (display_name ILIKE %s OR wa_id LIKE %s)
        ORDER BY last_message_at DESC NULLS LAST, created_at DESC
        LIMIT %s
        """,
        (pattern, pattern, limit),
    )
    return [_row_to_contact(row) for row in rows]


def set_blocked(
    cur: PgCursor,
    wa_id: str,
    *,
    blocked: bool,
    reason: str | None,
    now: datetime,
) -> Contact | None:
    cur.execute(
        f"""
        UPDATE contacts
        SET is_blocked = %s, block_reason = %s, last_activity_at = %s, updated_at = %s
        WHERE wa_id = %s
        RETURNING {_COLUMNS}
        """,
        (blocked, reason if blocked else None, now, now, wa_id),
    )
    row = cur.fetchone()
    return _row_to_contact(row) if row else None


def count_active(cur: PgCursor, *, messaged_since: datetime | None = None) -> int:
    if messaged_since is None:
        row = fetchone(cur, "SELECT count(*) FROM contacts WHERE is_active")
    else:
        row = fetchone(
            cur,
            "SELECT count(*) FROM contacts WHERE is_active AND last_message_at >= %s",
            (messaged_since,),
        )
    return int(row[0]) if row else 0


class PgContactRepository:
    """Async ContactRepository over psycopg2."""

    @staticmethod
    def _get(wa_id: str) -> Contact | None:
        with txn() as cur:
            return get_contact(cur, wa_id)

    async def get(self, wa_id: str) -> Contact | None:
        return await run_sync(self._get, wa_id)

    @staticmethod
    def _upsert_profile(wa_id: str, **kwargs: Any) -> Contact:
        with txn() as cur:
            return upsert_profile(cur, wa_id, **kwargs)

    async def upsert_profile(
        self,
        wa_id: str,
        *,
        display_name: str | None,
        profile_picture: str | None,
        now: datetime,
    ) -> Contact:
        return await run_sync(
            self._upsert_profile,
            wa_id,
            display_name=display_name,
            profile_picture=profile_picture,
            now=now,
        )

    @staticmethod
    def _record_message(wa_id: str, **kwargs: Any) -> Contact:
        with txn() as cur:
            return record_message(cur, wa_id, **kwargs)

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
        return await run_sync(
            self._record_message,
            wa_id,
            preview=preview,
            message_at=message_at,
            unread_delta=unread_delta,
            unread_max=unread_max,
            now=now,
        )

    @staticmethod
    def _reset_unread(wa_id: str, now: datetime) -> Contact | None:
        with txn() as cur:
            return reset_unread(cur, wa_id, now)

    async def reset_unread(self, wa_id: str, now: datetime) -> Contact | None:
        return await run_sync(self._reset_unread, wa_id, now)

    @staticmethod
    def _list_active(limit: int, offset: int) -> list[Contact]:
        with txn() as cur:
            return list_active(cur, limit=limit, offset=offset)

    async def list_active(self, *, limit: int = 50, offset: int = 0) -> list[Contact]:
        return await run_sync(self._list_active, limit, offset)

    @staticmethod
    def _search(query: str, limit: int) -> list[Contact]:
        with txn() as cur:
            return search_contacts(cur, query, limit=limit)

    async def search(self, query: str, *, limit: int = 20) -> list[Contact]:
        return await run_sync(self._search, query, limit)

    @staticmethod
    def _set_blocked(wa_id: str, **kwargs: Any) -> Contact | None:
        with txn() as cur:
            return set_blocked(cur, wa_id, **kwargs)

    async def set_blocked(
        self,
        wa_id: str,
        *,
        blocked: bool,
        reason: str | None,
        now: datetime,
    ) -> Contact | None:
        return await run_sync(self._set_blocked, wa_id, blocked=blocked, reason=reason, now=now)

    @staticmethod
    def _count_active(messaged_since: datetime | None) -> int:
        with txn() as cur:
            return count_active(cur, messaged_since=messaged_since)

    async def count_active(self, *, messaged_since: datetime | None = None) -> int:
        return await run_sync(self._count_active, messaged_since)
