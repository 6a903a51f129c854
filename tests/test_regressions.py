from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared_context_bot.memory.storage.schema import MemorySchemaMixin  # noqa: E402
from shared_context_bot.memory.store import ContextStore  # noqa: E402


def test_schema_mismatch_raises_without_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", raising=False)
    db_path = tmp_path / "context.sqlite"

    asyncio.run(MemorySchemaMixin(db_path).init())
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    with pytest.raises(RuntimeError, match="schema version mismatch"):
        asyncio.run(MemorySchemaMixin(db_path).init())


def test_schema_mismatch_can_reset_with_explicit_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "context.sqlite"
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    monkeypatch.setenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "1")
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
    assert version == MemorySchemaMixin.SCHEMA_VERSION


def test_init_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "context.sqlite"
    asyncio.run(MemorySchemaMixin(db_path).init())
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert version == MemorySchemaMixin.SCHEMA_VERSION
    assert {"turns", "mood_state", "identities"} <= tables


def test_legacy_shared_context_rows_are_imported(tmp_path: Path) -> None:
    db_path = tmp_path / "contextDB.sqlite"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE shared_context (id INTEGER PRIMARY KEY AUTOINCREMENT, userId TEXT, "
            "userContent TEXT, botContent TEXT, timestamp DATETIME DEFAULT CURRENT_TIMESTAMP)"
        )
        conn.execute("CREATE TABLE mood_info (id INTEGER PRIMARY KEY AUTOINCREMENT, mood TEXT, lastUpdate DATE)")
        conn.execute(
            "INSERT INTO shared_context (userId, userContent, botContent, timestamp) VALUES (?, ?, ?, ?)",
            ("111", "hello there", "hi!", "2024-03-01 10:00:00"),
        )
        conn.execute(
            "INSERT INTO shared_context (userId, userContent, botContent, timestamp) VALUES (?, ?, ?, ?)",
            ("222", "what's up", "not much", "2024-03-01 10:05:00"),
        )
        conn.execute("INSERT INTO mood_info (mood, lastUpdate) VALUES (?, ?)", ("Grumpy", "2024-03-01"))
        conn.commit()

    async def _run() -> tuple[list, object]:
        store = ContextStore(db_path)
        await store.init()
        return await store.recent_turns("global", 10), await store.get_mood_state()

    turns, mood = asyncio.run(_run())

    assert [turn.sender_id for turn in turns] == ["222", "111"]
    assert turns[1].user_text == "hello there"
    assert turns[1].bot_text == "hi!"
    assert mood.label == "Grumpy"
    assert mood.last_update is not None and mood.last_update.isoformat() == "2024-03-01"


def test_blank_legacy_rows_are_skipped_so_reads_keep_working(tmp_path: Path) -> None:
    db_path = tmp_path / "contextDB.sqlite"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE shared_context (id INTEGER PRIMARY KEY AUTOINCREMENT, userId TEXT, "
            "userContent TEXT, botContent TEXT, timestamp DATETIME DEFAULT CURRENT_TIMESTAMP)"
        )
        conn.executemany(
            "INSERT INTO shared_context (userId, userContent, botContent, timestamp) VALUES (?, ?, ?, ?)",
            [
                ("111", "hello there", "hi!", "2024-03-01 10:00:00"),
                ("222", "   ", "\n\t ", "2024-03-01 10:01:00"),
                ("333", "", "only the bot spoke", "2024-03-01 10:02:00"),
            ],
        )
        conn.commit()

    async def _run() -> list:
        store = ContextStore(db_path)
        await store.init()
        return await store.recent_turns("global", 10)

    turns = asyncio.run(_run())

    assert [turn.sender_id for turn in turns] == ["333", "111"]
