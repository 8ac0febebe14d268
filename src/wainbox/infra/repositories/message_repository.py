"""Message repository - PostgreSQL message log.

Uses raw SQL with psycopg2 (no ORM). Blocking calls run in a worker thread
through run_sync(); each call is one short transaction.
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from wainbox.infra.db import contains_pattern, fetchall, fetchone, for_update, run_sync, txn
from wainbox.whatsapp.models import (
    MediaAttributes,
    Message,
    MessageKind,
    MessageStatus,
    StatusChange,
    resolve_transition,
)

_COLUMNS = """
    message_key, alternate_key, wa_id, from_number, to_number,
    direction, direction_confidence, kind, body, media,
    status, status_timestamps, status_history, error_reason,
    is_placeholder, source_payload_id, message_at, created_at
"""


def _row_to_message(row: tuple[Any, ...]) -> Message:
    timestamps = row[11] or {}
    history = row[12] or []
    return Message(
        message_key=row[0],
        alternate_key=row[1],
        wa_id=row[2],
        from_number=row[3],
        to_number=row[4],
        direction=row[5],
        direction_confidence=row[6],
        kind=row[7],
        body=row[8],
        media=MediaAttributes.from_dict(row[9]),
        status=row[10],
        status_timestamps={k: datetime.fromisoformat(v) for k, v in timestamps.items()},
        status_history=tuple(StatusChange.from_dict(item) for item in history),
        error_reason=row[13],
        is_placeholder=row[14],
        source_payload_id=row[15],
        timestamp=row[16],
        created_at=row[17],
    )


def _timestamps_json(timestamps: dict[str, datetime]) -> Json:
    return Json({k: v.isoformat() for k, v in timestamps.items()})


def _history_json(history: tuple[StatusChange, ...]) -> Json:
    return Json([change.to_dict() for change in history])


def get_message(cur: PgCursor, message_key: str) -> Message | None:
    row = fetchone(cur, f"SELECT {_COLUMNS} FROM messages WHERE message_key = %s", (message_key,))
    return _row_to_message(row) if row else None


def insert_message(cur: PgCursor, message: Message) -> tuple[Message, bool]:
    """Insert with ON CONFLICT DO NOTHING; return the existing row on conflict."""
    cur.execute(
        f"""
        INSERT INTO messages ({_COLUMNS})
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (message_key) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (
            message.message_key,
            message.alternate_key,
            message.wa_id,
            message.from_number,
            message.to_number,
            message.direction,
            message.direction_confidence,
            message.kind,
            message.body,
            Json(message.media.to_dict()) if message.media else None,
            message.status,
            _timestamps_json(dict(message.status_timestamps)),
            _history_json(message.status_history),
            message.error_reason,
            message.is_placeholder,
            message.source_payload_id,
            message.timestamp,
            message.created_at,
        ),
    )
    row = cur.fetchone()
    if row is not None:
        return _row_to_message(row), True

    existing = get_message(cur, message.message_key)
    if existing is None:
        # Conflicting row deleted between INSERT and SELECT
        raise RuntimeError(f"message {message.message_key} vanished during insert")
    return existing, False


def update_status(
    cur: PgCursor,
    message_key: str,
    status: MessageStatus,
    observed_at: datetime,
    *,
    source_payload_id: str | None = None,
    alternate_key: str | None = None,
    error_reason: str | None = None,
) -> Message | None:
    """Apply one status observation under SELECT ... FOR UPDATE."""
    row = for_update(cur, f"SELECT {_COLUMNS} FROM messages WHERE message_key = %s", (message_key,))
    if row is None:
        return None
    current = _row_to_message(row)
    if current.repeats_last_observation(status, observed_at, source_payload_id):
        return current

    timestamps = dict(current.status_timestamps)
    timestamps.setdefault(status, observed_at)
    history = current.status_history + (
        StatusChange(current.status, status, observed_at, source_payload_id),
    )
    new_error = error_reason if status == "failed" and error_reason else current.error_reason

    cur.execute(
        f"""
        UPDATE messages
        SET status = %s,
            status_timestamps = %s,
            status_history = %s,
            alternate_key = COALESCE(alternate_key, %s),
            error_reason = %s
        WHERE message_key = %s
        RETURNING {_COLUMNS}
        """,
        (
            resolve_transition(current.status, status),
            _timestamps_json(timestamps),
            _history_json(history),
            alternate_key,
            new_error,
            message_key,
        ),
    )
    return _row_to_message(cur.fetchone())


def mark_conversation_read(cur: PgCursor, wa_id: str, observed_at: datetime) -> int:
    observed = observed_at.isoformat()
    cur.execute(
        """
        UPDATE messages
        SET status = 'read',
            status_timestamps = CASE
                WHEN status_timestamps ? 'read' THEN status_timestamps
                ELSE status_timestamps || jsonb_build_object('read', %s::text)
            END,
            status_history = status_history || jsonb_build_array(jsonb_build_object(
                'from_status', status,
                'to_status', 'read',
                'observed_at', %s::text,
                'source_payload_id', NULL
            ))
        WHERE wa_id = %s AND direction = 'incoming' AND status <> 'read'
        """,
        (observed, observed, wa_id),
    )
    return cur.rowcount


def list_messages(
    cur: PgCursor,
    wa_id: str,
    *,
    limit: int,
    offset: int,
    kind: str | None = None,
    status: str | None = None,
) -> list[Message]:
    conditions = ["wa_id = %s"]
    params: list[Any] = [wa_id]
    if kind is not None:
        conditions.append("kind = %s")
        params.append(kind)
    if status is not None:
        conditions.append("status = %s")
        params.append(status)
    params.extend([limit, offset])

    rows = fetchall(
        cur,
        f"""
        SELECT {_COLUMNS} FROM messages
        WHERE {" AND ".join(conditions)}
        ORDER BY message_at, created_at, message_key
        LIMIT %s OFFSET %s
        """,
        params,
    )
    return [_row_to_message(row) for row in rows]


def count_unread(cur: PgCursor, wa_id: str) -> int:
    row = fetchone(
        cur,
        """
        SELECT count(*) FROM messages
        WHERE wa_id = %s AND direction = 'incoming' AND status <> 'read'
        """,
        (wa_id,),
    )
    return int(row[0]) if row else 0


def search_messages(cur: PgCursor, query: str, *, wa_id: str | None, limit: int) -> list[Message]:
    conditions = ["body ILIKE %s"]
    params: list[Any] = [contains_pattern(query)]
    if wa_id is not None:
        conditions.append("wa_id = %s")
        params.append(wa_id)
    params.append(limit)

    rows = fetchall(
        cur,
        f"""
        SELECT {_COLUMNS} FROM messages
        WHERE {" AND ".join(conditions)}
        ORDER BY message_at DESC, created_at DESC, message_key DESC
        LIMIT %s
        """,
        params,
    )
    return [_row_to_message(row) for row in rows]


def count_messages(cur: PgCursor, *, since: datetime | None = None) -> int:
    if since is None:
        row = fetchone(cur, "SELECT count(*) FROM messages")
    else:
        row = fetchone(cur, "SELECT count(*) FROM messages WHERE message_at >= %s", (since,))
    return int(row[0]) if row else 0


def count_all_unread(cur: PgCursor) -> int:
    row = fetchone(
        cur,
        "SELECT count(*) FROM messages WHERE direction = 'incoming' AND status <> 'read'",
    )
    return int(row[0]) if row else 0


class PgMessageRepository:
    """Async MessageRepository over psycopg2."""

    @staticmethod
    def _get(message_key: str) -> Message | None:
        with txn() as cur:
            return get_message(cur, message_key)

    async def get(self, message_key: str) -> Message | None:
        return await run_sync(self._get, message_key)

    @staticmethod
    def _insert(message: Message) -> tuple[Message, bool]:
        with txn() as cur:
            return insert_message(cur, message)

    async def insert_if_absent(self, message: Message) -> tuple[Message, bool]:
        return await run_sync(self._insert, message)

    @staticmethod
    def _apply_status(message_key: str, status: MessageStatus, observed_at: datetime, **kwargs: Any) -> Message | None:
        with txn() as cur:
            return update_status(cur, message_key, status, observed_at, **kwargs)

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
        return await run_sync(
            self._apply_status,
            message_key,
            status,
            observed_at,
            source_payload_id=source_payload_id,
            alternate_key=alternate_key,
            error_reason=error_reason,
        )

    @staticmethod
    def _mark_read(wa_id: str, observed_at: datetime) -> int:
        with txn() as cur:
            return mark_conversation_read(cur, wa_id, observed_at)

    async def mark_incoming_read(self, wa_id: str, observed_at: datetime) -> int:
        return await run_sync(self._mark_read, wa_id, observed_at)

    @staticmethod
    def _list(wa_id: str, **kwargs: Any) -> list[Message]:
        with txn() as cur:
            return list_messages(cur, wa_id, **kwargs)

    async def list_for_conversation(
        self,
        wa_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        kind: MessageKind | None = None,
        status: MessageStatus | None = None,
    ) -> list[Message]:
        return await run_sync(self._list, wa_id, limit=limit, offset=offset, kind=kind, status=status)

    @staticmethod
    def _count_unread(wa_id: str) -> int:
        with txn() as cur:
            return count_unread(cur, wa_id)

    async def count_unread(self, wa_id: str) -> int:
        return await run_sync(self._count_unread, wa_id)

    @staticmethod
    def _search(query: str, wa_id: str | None, limit: int) -> list[Message]:
        with txn() as cur:
            return search_messages(cur, query, wa_id=wa_id, limit=limit)

    async def search(self, query: str, *, wa_id: str | None = None, limit: int = 20) -> list[Message]:
        return await run_sync(self._search, query, wa_id, limit)

    @staticmethod
    def _count_messages(since: datetime | None) -> int:
        with txn() as cur:
            return count_messages(cur, since=since)

    async def count_messages(self, *, since: datetime | None = None) -> int:
        return await run_sync(self._count_messages, since)

    @staticmethod
    def _count_all_unread() -> int:
        with txn() as cur:
            return count_all_unread(cur)

    async def count_all_unread(self) -> int:
        return await run_sync(self._count_all_unread)
