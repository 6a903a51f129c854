from __future__ import annotations

import asyncio
import logging
import os
from collections import defaultdict
from pathlib import Path

import aiosqlite

from .utils import _sqlite_memory_connection, _store_operation

logger = logging.getLogger("shared_context_bot.memory")

_TRUTHY = {"1", "true", "yes", "y", "on"}
_KNOWN_TABLES = ("turns", "mood_state", "identities", "shared_context", "mood_info")
_BLANK_CHARS = " \t\r\n"


class MemorySchemaMixin:
    """Tables for turns, mood and identities, versioned through ``PRAGMA user_version``.

    A file written by a newer build is refused unless
    ``MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH`` allows dropping it. Older files are
    migrated in place, including the pre-versioned ``shared_context`` layout.
    """

    SCHEMA_VERSION = 2

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._scope_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def _reset_allowed() -> bool:
        return os.getenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "").strip().lower() in _TRUTHY

    async def _user_version(self, db: aiosqlite.Connection) -> int:
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _table_names(self, db: aiosqlite.Connection) -> set[str]:
        async with db.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ) as cursor:
            rows = await cursor.fetchall()
        return {str(row[0]) for row in rows}

    def _init_action(self, version: int, has_tables: bool) -> str:
        if not has_tables:
            return "create"
        if version == self.SCHEMA_VERSION:
            return "migrate"
        if self._reset_allowed():
            return "reset"
        if version > self.SCHEMA_VERSION:
            raise RuntimeError(
                "SQLite schema version mismatch detected (database is newer than this bot build). "
                f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                "Set MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
            )
        return "migrate"

    async def init(self) -> None:
        async with _store_operation("init"), _sqlite_memory_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            version = await self._user_version(db)
            tables = await self._table_names(db)
            action = self._init_action(version, bool(tables))

            if action == "reset":
                logger.warning("[memory.schema] dropping tables at user_version=%s", version)
                await self._reset_schema(db)
            else:
                await self._create_schema(db)
                if action == "migrate":
                    await self._migrate_schema(db, version, tables)

            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS turns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scope_key TEXT NOT NULL DEFAULT 'global',
                sender_id TEXT NOT NULL,
                user_text TEXT,
                bot_text TEXT,
                timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS mood_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                mood_score INTEGER NOT NULL DEFAULT 0,
                mood_label TEXT NOT NULL DEFAULT '',
                last_update DATE
            );

            CREATE TABLE IF NOT EXISTS identities (
                user_id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        await self._migrate_v2_scope_schema(db)

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        for table in _KNOWN_TABLES:
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)

    async def _add_column_if_missing(self, db: aiosqlite.Connection, table_name: str, column_sql: str) -> None:
        async with db.execute(f"PRAGMA table_info({table_name})") as cursor:
            existing = {str(row[1]) for row in await cursor.fetchall()}
        if column_sql.split()[0] in existing:
            return
        await db.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")

    async def _migrate_schema(self, db: aiosqlite.Connection, from_version: int, tables: set[str]) -> None:
        if from_version < 1:
            await self._import_legacy_tables(db, tables)
        # Idempotent, also heals partially migrated files.
        await self._migrate_v2_scope_schema(db)

    async def _migrate_v2_scope_schema(self, db: aiosqlite.Connection) -> None:
        await self._add_column_if_missing(db, "turns", "scope_key TEXT NOT NULL DEFAULT 'global'")
        await db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_turns_scope_recent
            ON turns(scope_key, timestamp DESC, id DESC)
            """
        )

    async def _import_legacy_tables(self, db: aiosqlite.Connection, tables: set[str]) -> None:
        """Carry rows over from the single-table layout (``shared_context`` / ``mood_info``)."""
        if "shared_context" in tables:
            cursor = await db.execute(
                """
                INSERT INTO turns (scope_key, sender_id, user_text, bot_text, timestamp)
                SELECT 'global', COALESCE(NULLIF(userId, ''), 'bot'), userContent, botContent,
                       COALESCE(timestamp, CURRENT_TIMESTAMP)
                FROM shared_context
                WHERE TRIM(COALESCE(userContent, ''), ?) <> '' OR TRIM(COALESCE(botContent, ''), ?) <> ''
                ORDER BY id
                """,
                (_BLANK_CHARS, _BLANK_CHARS),
            )
            logger.info("Imported %s legacy shared_context rows", cursor.rowcount)

        if "mood_info" in tables:
            await db.execute(
                """
                INSERT OR IGNORE INTO mood_state (id, mood_score, mood_label, last_update)
                SELECT 1, 0, COALESCE(mood, ''), lastUpdate
                FROM mood_info
                ORDER BY id DESC
                LIMIT 1
                """
            )
