"""DuckDB-backed durable message store.

Database Schema:
    messages table:
        - id: BIGINT from messages_seq (distinct under concurrent appends)
        - kind: 'room' or 'private'
        - room: Room name (room messages only)
        - body: Message text
        - sender / sender_user_id / sender_connection_id
        - to_username / to_user_id / to_connection_id (private messages only)
        - ts: Creation instant, naive UTC, millisecond precision
        - attachments / read_by / reactions: JSON text

Thread Safety:
    A single DuckDB connection is shared and every statement runs under one
    lock. Public coroutines hand the blocking work to a worker thread with
    run_in_executor so a slow write only delays its own caller.

Usage:
    store = DuckDBMessageStore("messages.duckdb")
    message = await store.append(RoomMessageDraft(room="global", ...))
    page = await store.page(RoomScope("global"), before=None, limit=50)
"""
import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

import duckdb

from parley.errors import MalformedRequestError, MessageNotFoundError, PersistenceError

from .base import (
    DEFAULT_PAGE_SIZE,
    MAX_SEARCH_RESULTS,
    MessageStore,
    StoredMessage,
    clamp_limit,
    toggle_reaction,
)
from .schemas import (
    MESSAGE_ADAPTER,
    HistoryScope,
    MessageDraft,
    PrivateMessageDraft,
    PrivateScope,
    Reaction,
    RoomMessageDraft,
    RoomScope,
    next_timestamp,
    stamp,
)

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, kind, room, body, sender, sender_user_id, sender_connection_id,
    to_username, to_user_id, to_connection_id, ts, attachments, read_by, reactions
"""

# Largest value the BIGINT id column can hold
_MAX_BIGINT = 2 ** 63 - 1

# Escape character for LIKE patterns built from user input
_LIKE_ESCAPE = "!"


def escape_like(text: str) -> str:
    """Neutralize LIKE metacharacters so ``text`` matches literally."""
    return (
        text.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def _to_db_ts(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DuckDBMessageStore(MessageStore):
    """Durable message store on an embedded DuckDB database."""

    backend_name = "duckdb"

    def __init__(self, db_path: str = "messages.duckdb") -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to the DuckDB file, or ":memory:".

        Raises:
            PersistenceError: If the database cannot be opened.
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._last_ts: Optional[datetime] = None
        try:
            self._initialize_db()
        except duckdb.Error as e:
            raise PersistenceError(f"Cannot open message database {db_path}: {e}") from e

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the sequence, table and indexes if they don't exist."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id BIGINT PRIMARY KEY,
                kind VARCHAR NOT NULL,
                room VARCHAR,
                body VARCHAR NOT NULL,
                sender VARCHAR NOT NULL,
                sender_user_id VARCHAR,
                sender_connection_id VARCHAR,
                to_username VARCHAR,
                to_user_id VARCHAR,
                to_connection_id VARCHAR,
                ts TIMESTAMP NOT NULL,
                attachments VARCHAR NOT NULL,
                read_by VARCHAR NOT NULL,
                reactions VARCHAR NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_room_ts ON messages(room, ts)")
        row = conn.execute("SELECT max(ts) FROM messages").fetchone()
        if row and row[0] is not None:
            self._last_ts = row[0].replace(tzinfo=timezone.utc)

    async def _run(self, func, *args):
        """Run a blocking database call off the event loop under the lock."""
        def locked():
            with self._lock:
                return func(*args)
        try:
            return await asyncio.get_event_loop().run_in_executor(None, locked)
        except duckdb.Error as e:
            logger.error(f"[Store] DuckDB error in {func.__name__}: {e}")
            raise PersistenceError(str(e)) from e

    @staticmethod
    def _row_to_message(row) -> StoredMessage:
        data = {
            "id": str(row[0]),
            "kind": row[1],
            "message": row[3],
            "sender": row[4],
            "senderUserId": row[5],
            "senderId": row[6],
            "timestamp": row[10],
            "attachments": json.loads(row[11]),
            "readBy": json.loads(row[12]),
            "reactions": json.loads(row[13]),
        }
        if row[1] == "room":
            data["room"] = row[2]
        else:
            data.update(toUsername=row[7], toUserId=row[8], toConnectionId=row[9])
        return MESSAGE_ADAPTER.validate_python(data)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _append_sync(self, draft: MessageDraft) -> StoredMessage:
        conn = self._get_connection()
        message_id = conn.execute("SELECT nextval('messages_seq')").fetchone()[0]
        timestamp = next_timestamp(self._last_ts)

        room = draft.room if isinstance(draft, RoomMessageDraft) else None
        to_username = to_user_id = to_connection_id = None
        if isinstance(draft, PrivateMessageDraft):
            to_username = draft.toUsername
            to_user_id = draft.toUserId
            to_connection_id = draft.toConnectionId

        conn.execute(
            f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                message_id,
                draft.kind,
                room,
                draft.message,
                draft.sender,
                draft.senderUserId,
                draft.senderId,
                to_username,
                to_user_id,
                to_connection_id,
                _to_db_ts(timestamp),
                json.dumps([a.model_dump() for a in draft.attachments]),
                "[]",
                "[]",
            ],
        )
        self._last_ts = timestamp
        return stamp(draft, str(message_id), timestamp)

    async def append(self, draft: MessageDraft) -> StoredMessage:
        return await self._run(self._append_sync, draft)

    def _fetch_row(self, message_id: str):
        if not self.is_valid_id(message_id) or len(message_id) > 19 or int(message_id) > _MAX_BIGINT:
            raise MalformedRequestError(f"Invalid message id: {message_id!r}")
        row = self._get_connection().execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [int(message_id)]
        ).fetchone()
        if row is None:
            raise MessageNotFoundError(message_id)
        return row

    def _update_read_by_sync(self, message_id: str, user_id: str) -> bool:
        row = self._fetch_row(message_id)
        read_by = json.loads(row[12])
        if user_id in read_by:
            return False
        read_by.append(user_id)
        self._get_connection().execute(
            "UPDATE messages SET read_by = ? WHERE id = ?",
            [json.dumps(read_by), int(message_id)],
        )
        return True

    async def update_read_by(self, message_id: str, user_id: str) -> bool:
        return await self._run(self._update_read_by_sync, message_id, user_id)

    def _update_reaction_sync(
        self, message_id: str, user_id: str, reaction_type: str
    ) -> List[Reaction]:
        row = self._fetch_row(message_id)
        current = [Reaction(**r) for r in json.loads(row[13])]
        updated = toggle_reaction(current, user_id, reaction_type)
        self._get_connection().execute(
            "UPDATE messages SET reactions = ? WHERE id = ?",
            [json.dumps([r.model_dump() for r in updated]), int(message_id)],
        )
        return updated

    async def update_reaction(
        self, message_id: str, user_id: str, reaction_type: str
    ) -> List[Reaction]:
        return await self._run(self._update_reaction_sync, message_id, user_id, reaction_type)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _page_sync(
        self, scope: HistoryScope, before: Optional[datetime], limit: int
    ) -> List[StoredMessage]:
        if isinstance(scope, RoomScope):
            where = "kind = 'room' AND room = ?"
            params: list = [scope.room]
        elif isinstance(scope, PrivateScope):
            where = (
                "kind = 'private' AND ("
                "(sender = ? AND to_username = ?) OR (sender = ? AND to_username = ?))"
            )
            params = [scope.user_a, scope.user_b, scope.user_b, scope.user_a]
        else:
            raise MalformedRequestError(f"Unsupported history scope: {scope!r}")

        if before is not None:
            where += " AND ts < ?"
            params.append(_to_db_ts(before))

        rows = self._get_connection().execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE {where}
            ORDER BY ts DESC, id DESC
            LIMIT ?
            """,
            params + [limit],
        ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    async def page(
        self,
        scope: HistoryScope,
        before: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[StoredMessage]:
        return await self._run(self._page_sync, scope, before, clamp_limit(limit))

    def _search_sync(self, room: str, text: str) -> List[StoredMessage]:
        pattern = f"%{escape_like(text)}%"
        rows = self._get_connection().execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE kind = 'room' AND room = ?
              AND (body ILIKE ? ESCAPE '{_LIKE_ESCAPE}' OR sender ILIKE ? ESCAPE '{_LIKE_ESCAPE}')
            ORDER BY ts DESC, id DESC
            LIMIT ?
            """,
            [room, pattern, pattern, MAX_SEARCH_RESULTS],
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    async def search(self, room: str, text: str) -> List[StoredMessage]:
        text = (text or "").strip()
        if not text:
            return []
        return await self._run(self._search_sync, room, text)

    async def get(self, message_id: str) -> StoredMessage:
        row = await self._run(self._fetch_row, message_id)
        return self._row_to_message(row)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
