"""SQLite conversation state adapter.

Implements the core ConversationStatePort so processed message ids survive
restarts.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from core.cutover import Clock, local_now, parse_store_timestamp
from core.dedup import message_key
from core.errors import StoreUnavailableError
from core.models import InboundMessageRecord

LOGGER = logging.getLogger(__name__)


def _utc_text(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical and chronological order identical.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteConversationState:
    """Thin SQLite wrapper that satisfies the ConversationStatePort contract."""

    def __init__(
        self,
        db_path: str,
        max_message_age: timedelta = timedelta(hours=1),
        clock: Clock = local_now,
    ) -> None:
        self._db_path = db_path
        self._max_message_age = max_message_age
        self._clock = clock
        self._bot_started_at: Optional[datetime] = None
        self._session_id: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self._bot_started_at is not None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - processed_messages: message ids already examined by the poller
        - conversation_cursor: newest processed timestamp per conversation
        """

        with self._connect() as conn:
            # Fields:
            # - message_id: store id as text (PRIMARY KEY)
            # - conversation_id: chat the message belongs to
            # - message_timestamp: UTC text of the message timestamp
            # - processed_at: UTC text used by the retention sweep
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_messages (
                    message_id TEXT PRIMARY KEY,
                    conversation_id TEXT,
                    message_timestamp TEXT,
                    processed_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversation_cursor (
                    conversation_id TEXT PRIMARY KEY,
                    last_timestamp TEXT NOT NULL
                )
                """
            )

    def initialize(self) -> None:
        """Create the schema and stamp this session's start time."""

        try:
            self.init_db()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open conversation state {self._db_path}: {exc}") from exc

        self._bot_started_at = self._clock()
        self._session_id = uuid.uuid4().hex[:12]
        LOGGER.info(
            "Conversation state ready (session %s, %s processed messages on record)",
            self._session_id,
            self.processed_count(),
        )

    def is_processed(self, message_id) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_messages WHERE message_id = ?",
                (message_key(message_id),),
            ).fetchone()
        return row is not None

    def last_timestamp_for(self, conversation_id: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_timestamp FROM conversation_cursor WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        return parse_store_timestamp(row["last_timestamp"]) if row else None

    def should_process_message(self, record: InboundMessageRecord) -> bool:
        """Pre-filter used by the dedup cache; False means skip the message."""

        if not self.initialized:
            LOGGER.warning("Conversation state not initialized; skipping message %s", record.id)
            return False

        if record.is_from_self:
            return False

        if self.is_processed(record.id):
            LOGGER.info("Message %s already processed (durable state)", record.id)
            return False

        if record.timestamp is None:
            return False

        if record.conversation_id:
            last = self.last_timestamp_for(record.conversation_id)
            if last is not None and record.timestamp <= last:
                LOGGER.info("Message %s is older than the last processed for %s", record.id, record.conversation_id)
                return False

        if record.timestamp < self._bot_started_at - self._max_message_age:
            LOGGER.info("Message %s is too old relative to bot start", record.id)
            return False

        return True

    def mark_message_processed(self, record: InboundMessageRecord) -> None:
        """Record the id and move the conversation's cursor forward."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO processed_messages (
                    message_id,
                    conversation_id,
                    message_timestamp,
                    processed_at
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    message_key(record.id),
                    record.conversation_id,
                    _utc_text(record.timestamp) if record.timestamp else None,
                    _utc_text(now),
                ),
            )
            if record.conversation_id and record.timestamp is not None:
                conn.execute(
                    """
                    INSERT INTO conversation_cursor (conversation_id, last_timestamp)
                    VALUES (?, ?)
                    ON CONFLICT(conversation_id) DO UPDATE SET last_timestamp = excluded.last_timestamp
                    WHERE excluded.last_timestamp > conversation_cursor.last_timestamp
                    """,
                    (record.conversation_id, _utc_text(record.timestamp)),
                )

    def processed_count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM processed_messages").fetchone()
        return int(row["total"])

    def cleanup_processed(self, ttl_days: int) -> int:
        """Delete processed ids older than the retention window and return the count."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM processed_messages WHERE processed_at < ?",
                (_utc_text(cutoff),),
            )
            return cur.rowcount

    def close(self) -> None:
        # Every mark is committed immediately, there is nothing left to flush.
        if self.initialized:
            LOGGER.info("Conversation state closed (session %s)", self._session_id)
        self._bot_started_at = None
