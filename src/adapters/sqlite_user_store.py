"""SQLite user store adapter for admin lookups."""

from __future__ import annotations

import os
import sqlite3
from typing import Optional

from core.errors import StoreUnavailableError
from core.models import UserRecord


class SQLiteUserStore:
    """Looks users up by WhatsApp JID in the bot's ``users`` table."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(f"file:{self._db_path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def get_user_by_address(self, address: str) -> Optional[UserRecord]:
        if not os.path.exists(self._db_path):
            raise StoreUnavailableError(f"User database not found: {self._db_path}")

        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT whatsapp_jid, user_type, display_name FROM users WHERE whatsapp_jid = ?",
                    (address,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot read users from {self._db_path}: {exc}") from exc

        if row is None:
            return None
        return UserRecord(
            address=row["whatsapp_jid"],
            role=row["user_type"] or "",
            display_name=row["display_name"],
        )
