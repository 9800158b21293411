"""SQLite message store adapter.

Reads the bridge's ``messages.db`` read-only and implements the core
MessageStorePort. This is the only place that knows how the bridge
serializes timestamps.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime

from core.cutover import format_store_timestamp, parse_store_timestamp
from core.errors import StoreUnavailableError
from core.models import InboundMessageRecord

LOGGER = logging.getLogger(__name__)

# Rows are compared as text against the bridge's own "YYYY-MM-DD HH:MM:SS+HH:MM"
# values, so the boundary must use the same format and local offset.
_MESSAGES_SINCE = """
    SELECT m.id, m.chat_jid, m.sender, m.content, m.timestamp, m.is_from_me,
           m.media_type, c.name AS chat_name
    FROM messages m
    LEFT JOIN chats c ON m.chat_jid = c.jid
    WHERE m.timestamp > ?
    AND (COALESCE(m.content, '') != '' OR COALESCE(m.media_type, '') != '')
    ORDER BY m.timestamp ASC
    LIMIT ?
"""


def row_to_record(row: sqlite3.Row) -> InboundMessageRecord:
    """Map a bridge row to the core record, tolerating bad timestamps."""

    try:
        timestamp = parse_store_timestamp(row["timestamp"])
    except (TypeError, ValueError):
        LOGGER.warning("Unreadable timestamp %r on message %s", row["timestamp"], row["id"])
        timestamp = None

    return InboundMessageRecord(
        id=row["id"],
        conversation_id=row["chat_jid"] or None,
        sender_id=row["sender"] or None,
        body=row["content"] or "",
        timestamp=timestamp,
        is_from_self=bool(row["is_from_me"]),
        chat_name=row["chat_name"],
        media_type=row["media_type"] or None,
    )


class SQLiteMessageStore:
    """Read-only view over the bridge database."""

    def __init__(self, db_path: str, fetch_limit: int = 100) -> None:
        self._db_path = db_path
        self._fetch_limit = fetch_limit

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(f"file:{self._db_path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def is_ready(self) -> bool:
        # The bridge creates the database on first run; until then there is
        # nothing to poll.
        return os.path.exists(self._db_path)

    def get_messages_since(self, boundary: datetime) -> list[InboundMessageRecord]:
        """Return rows newer than ``boundary`` in ascending timestamp order."""

        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    _MESSAGES_SINCE,
                    (format_store_timestamp(boundary), self._fetch_limit),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot read {self._db_path}: {exc}") from exc

        return [row_to_record(row) for row in rows]
