from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from adapters.sqlite_conversation_state import SQLiteConversationState
from adapters.sqlite_message_store import SQLiteMessageStore
from adapters.sqlite_user_store import SQLiteUserStore
from core.cutover import format_store_timestamp
from core.errors import StoreUnavailableError
from core.models import InboundMessageRecord

UTC_PLUS_2 = timezone(timedelta(hours=2))
START = datetime(2024, 5, 1, 9, 0, 0, tzinfo=UTC_PLUS_2)


def _ts(seconds: int) -> str:
    # The bridge writes local time with its offset.
    return format_store_timestamp(START + timedelta(seconds=seconds))


def _bridge_db(path: Path, rows: list[tuple]) -> str:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE chats (jid TEXT PRIMARY KEY, name TEXT, last_message_time TIMESTAMP)")
    conn.execute(
        """
        CREATE TABLE messages (
            id TEXT, chat_jid TEXT, sender TEXT, content TEXT, timestamp TIMESTAMP,
            is_from_me BOOLEAN, media_type TEXT,
            PRIMARY KEY (id, chat_jid)
        )
        """
    )
    conn.execute("INSERT INTO chats VALUES ('a@s.whatsapp.net', 'Alice', NULL)")
    conn.executemany(
        "INSERT INTO messages (id, chat_jid, sender, content, timestamp, is_from_me, media_type) VALUES (?, ?, ?, ?, ?, ?, ?)",
        rows,
    )
    conn.commit()
    conn.close()
    return str(path)


def test_message_store_returns_rows_after_boundary_in_order(tmp_path: Path) -> None:
    db = _bridge_db(
        tmp_path / "messages.db",
        [
            ("m3", "a@s.whatsapp.net", "a", "third", _ts(3), 0, None),
            ("m1", "a@s.whatsapp.net", "a", "old", _ts(-1), 0, None),
            ("m2", "a@s.whatsapp.net", "a", "second", _ts(1), 1, None),
            ("m4", "a@s.whatsapp.net", "a", "", _ts(4), 0, None),
            ("m5", "b@s.whatsapp.net", "b", "", _ts(5), 0, "image"),
        ],
    )
    store = SQLiteMessageStore(db)

    records = store.get_messages_since(START)

    assert [record.id for record in records] == ["m2", "m3", "m5"]
    assert records[0].is_from_self
    assert records[0].timestamp == datetime(2024, 5, 1, 9, 0, 1, tzinfo=UTC_PLUS_2)
    assert records[1].chat_name == "Alice"
    assert records[2].chat_name is None
    assert records[2].media_type == "image"


def test_message_store_respects_fetch_limit(tmp_path: Path) -> None:
    rows = [
        (f"m{i}", "a@s.whatsapp.net", "a", "hi", _ts(i), 0, None)
        for i in range(1, 6)
    ]
    store = SQLiteMessageStore(_bridge_db(tmp_path / "messages.db", rows), fetch_limit=2)

    assert [record.id for record in store.get_messages_since(START)] == ["m1", "m2"]


def test_message_store_bad_timestamp_becomes_none(tmp_path: Path) -> None:
    db = _bridge_db(
        tmp_path / "messages.db",
        [("bad", "a@s.whatsapp.net", "a", "hello", "2024-13-99 not a time", 0, None)],
    )

    (record,) = SQLiteMessageStore(db).get_messages_since(START)

    assert record.id == "bad"
    assert record.timestamp is None


def test_message_store_readiness_and_errors(tmp_path: Path) -> None:
    missing = SQLiteMessageStore(str(tmp_path / "absent.db"))
    assert not missing.is_ready()
    with pytest.raises(StoreUnavailableError):
        missing.get_messages_since(START)

    empty = tmp_path / "empty.db"
    sqlite3.connect(empty).close()
    store = SQLiteMessageStore(str(empty))
    assert store.is_ready()
    with pytest.raises(StoreUnavailableError):
        store.get_messages_since(START)


def _users_db(path: Path) -> str:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE users (whatsapp_jid TEXT PRIMARY KEY, user_type TEXT, display_name TEXT)")
    conn.executemany(
        "INSERT INTO users VALUES (?, ?, ?)",
        [("111@s.whatsapp.net", "admin", "Ops"), ("222@s.whatsapp.net", "customer", None)],
    )
    conn.commit()
    conn.close()
    return str(path)


def test_user_store_lookup(tmp_path: Path) -> None:
    users = SQLiteUserStore(_users_db(tmp_path / "bot.db"))

    admin = users.get_user_by_address("111@s.whatsapp.net")
    assert admin is not None
    assert admin.role == "admin"
    assert admin.display_name == "Ops"
    assert users.get_user_by_address("222@s.whatsapp.net").role == "customer"
    assert users.get_user_by_address("333@s.whatsapp.net") is None


def test_user_store_missing_database_raises(tmp_path: Path) -> None:
    with pytest.raises(StoreUnavailableError):
        SQLiteUserStore(str(tmp_path / "absent.db")).get_user_by_address("111@s.whatsapp.net")


def _record(message_id: str, seconds: int, conversation_id: str = "a@s.whatsapp.net") -> InboundMessageRecord:
    return InboundMessageRecord(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=conversation_id,
        body="hello",
        timestamp=START + timedelta(seconds=seconds),
        is_from_self=False,
    )


def _state(tmp_path: Path) -> SQLiteConversationState:
    state = SQLiteConversationState(str(tmp_path / "state.db"), clock=lambda: START)
    state.initialize()
    return state


def test_state_requires_initialize(tmp_path: Path) -> None:
    state = SQLiteConversationState(str(tmp_path / "state.db"), clock=lambda: START)
    assert not state.should_process_message(_record("m1", 5))


def test_state_marks_processed_and_survives_restart(tmp_path: Path) -> None:
    state = _state(tmp_path)
    record = _record("m1", 5)

    assert state.should_process_message(record)
    state.mark_message_processed(record)
    state.mark_message_processed(record)
    assert not state.should_process_message(record)
    assert state.processed_count() == 1
    state.close()

    reopened = _state(tmp_path)
    assert reopened.is_processed("m1")
    assert not reopened.should_process_message(record)


def test_state_conversation_cursor_only_moves_forward(tmp_path: Path) -> None:
    state = _state(tmp_path)
    state.mark_message_processed(_record("m2", 20))
    state.mark_message_processed(_record("m1", 10))

    assert state.last_timestamp_for("a@s.whatsapp.net") == START + timedelta(seconds=20)
    assert not state.should_process_message(_record("m3", 15))
    assert state.should_process_message(_record("m4", 25))
    assert state.should_process_message(_record("m5", 15, conversation_id="b@s.whatsapp.net"))


def test_state_rejects_self_and_too_old(tmp_path: Path) -> None:
    state = _state(tmp_path)
    own = InboundMessageRecord(
        id="self",
        conversation_id="a@s.whatsapp.net",
        sender_id="me",
        body="hi",
        timestamp=START,
        is_from_self=True,
    )

    assert not state.should_process_message(own)
    assert not state.should_process_message(_record("ancient", -2 * 3600))
    assert state.should_process_message(_record("recent", -30 * 60))


def test_state_cleanup_removes_expired_ids(tmp_path: Path) -> None:
    state = _state(tmp_path)
    state.mark_message_processed(_record("fresh", 1))
    state.mark_message_processed(_record("expired", 2))
    conn = sqlite3.connect(tmp_path / "state.db")
    conn.execute(
        "UPDATE processed_messages SET processed_at = ? WHERE message_id = 'expired'",
        ((datetime.now(timezone.utc) - timedelta(days=45)).isoformat(timespec="microseconds"),),
    )
    conn.commit()
    conn.close()

    assert state.cleanup_processed(30) == 1
    assert state.is_processed("fresh")
    assert not state.is_processed("expired")
