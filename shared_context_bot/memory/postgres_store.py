from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import timezone
from typing import AsyncIterator, Dict, List

import asyncpg

from ..context.models import MoodState, Turn
from ..errors import StoreError
from .storage.utils import validate_keep

logger = logging.getLogger("shared_context_bot.memory")


@asynccontextmanager
async def _pg_operation(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except StoreError:
        raise
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
        raise StoreError(operation, str(exc)) from exc


class PostgresContextStore:
    """Postgres-backed store implementing the same API as ContextStore."""

    SCHEMA_VERSION = 2
    backend_name = "postgres"

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("MEMORY_POSTGRES_DSN cannot be empty")
        self._pool: asyncpg.Pool | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._scope_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=6,
                command_timeout=30.0,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        self._initialized = False

    async def ping(self) -> None:
        async with _pg_operation("ping"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                await conn.execute("SELECT 1")

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            async with _pg_operation("init"):
                pool = await self._ensure_pool()
                async with pool.acquire() as conn:
                    async with conn.transaction():
                        version = await self._get_schema_version(conn)
                        if version > self.SCHEMA_VERSION:
                            raise RuntimeError(
                                f"Postgres context schema version {version} is newer than supported "
                                f"{self.SCHEMA_VERSION}. Upgrade the bot before starting."
                            )
                        await self._create_schema(conn)
                        if version != self.SCHEMA_VERSION:
                            await self._set_schema_version(conn, self.SCHEMA_VERSION)
            self._initialized = True

    async def _get_schema_version(self, conn: asyncpg.Connection) -> int:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS context_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        raw = await conn.fetchval("SELECT value FROM context_meta WHERE key = 'schema_version'")
        try:
            return int(raw or 0)
        except ValueError:
            return 0

    async def _set_schema_version(self, conn: asyncpg.Connection, version: int) -> None:
        await conn.execute(
            """
            INSERT INTO context_meta (key, value, updated_at)
            VALUES ('schema_version', $1, NOW())
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
            """,
            str(version),
        )

    async def _create_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS turns (
                id BIGSERIAL PRIMARY KEY,
                scope_key TEXT NOT NULL DEFAULT 'global',
                sender_id TEXT NOT NULL,
                user_text TEXT,
                bot_text TEXT,
                timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            ALTER TABLE turns
            ADD COLUMN IF NOT EXISTS scope_key TEXT NOT NULL DEFAULT 'global';

            CREATE INDEX IF NOT EXISTS idx_turns_scope_recent
            ON turns(scope_key, timestamp DESC, id DESC);

            CREATE TABLE IF NOT EXISTS mood_state (
                id SMALLINT PRIMARY KEY CHECK (id = 1),
                mood_score INTEGER NOT NULL DEFAULT 0,
                mood_label TEXT NOT NULL DEFAULT '',
                last_update DATE
            );

            CREATE TABLE IF NOT EXISTS identities (
                user_id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

    async def append(self, turn: Turn) -> int:
        timestamp = turn.timestamp if turn.timestamp.tzinfo else turn.timestamp.replace(tzinfo=timezone.utc)
        async with self._scope_locks[turn.scope_key], _pg_operation("append"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                turn_id = await conn.fetchval(
                    """
                    INSERT INTO turns (scope_key, sender_id, user_text, bot_text, timestamp)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id
                    """,
                    turn.scope_key,
                    turn.sender_id,
                    turn.user_text,
                    turn.bot_text,
                    timestamp,
                )
        return int(turn_id)

    async def recent_turns(self, scope_key: str, limit: int) -> List[Turn]:
        if int(limit) <= 0:
            return []
        async with _pg_operation("recent_turns"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, scope_key, sender_id, user_text, bot_text, timestamp
                    FROM turns
                    WHERE scope_key = $1
                    ORDER BY timestamp DESC, id DESC
                    LIMIT $2
                    """,
                    scope_key,
                    int(limit),
                )
        return [
            Turn(
                id=int(row["id"]),
                scope_key=str(row["scope_key"]),
                sender_id=str(row["sender_id"]),
                user_text=row["user_text"],
                bot_text=row["bot_text"],
                timestamp=row["timestamp"].astimezone(timezone.utc),
            )
            for row in rows
        ]

    async def prune(self, scope_key: str, keep: int) -> int:
        keep = validate_keep(keep)
        async with self._scope_locks[scope_key], _pg_operation("prune"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                status = await conn.execute(
                    """
                    DELETE FROM turns
                    WHERE scope_key = $1
                      AND id NOT IN (
                        SELECT id
                        FROM turns
                        WHERE scope_key = $1
                        ORDER BY timestamp DESC, id DESC
                        LIMIT $2
                      )
                    """,
                    scope_key,
                    keep,
                )
        # asyncpg returns the command tag, e.g. "DELETE 3".
        try:
            return int(str(status).split()[-1])
        except (IndexError, ValueError):
            return 0

    async def count_turns(self, scope_key: str) -> int:
        async with _pg_operation("count_turns"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                value = await conn.fetchval("SELECT COUNT(*) FROM turns WHERE scope_key = $1", scope_key)
        return int(value or 0)

    async def get_mood_state(self) -> MoodState:
        async with _pg_operation("get_mood_state"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow("SELECT mood_score, mood_label, last_update FROM mood_state WHERE id = 1")
        if row is None:
            return MoodState()
        return MoodState(
            score=int(row["mood_score"] or 0),
            label=str(row["mood_label"] or ""),
            last_update=row["last_update"],
        )

    async def save_mood_state(self, state: MoodState) -> None:
        async with _pg_operation("save_mood_state"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO mood_state (id, mood_score, mood_label, last_update)
                    VALUES (1, $1, $2, $3)
                    ON CONFLICT (id) DO UPDATE SET
                        mood_score = EXCLUDED.mood_score,
                        mood_label = EXCLUDED.mood_label,
                        last_update = EXCLUDED.last_update
                    """,
                    int(state.score),
                    state.label,
                    state.last_update,
                )

    async def upsert_identity(self, user_id: str, display_name: str) -> None:
        async with _pg_operation("upsert_identity"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO identities (user_id, display_name, updated_at)
                    VALUES ($1, $2, NOW())
                    ON CONFLICT (user_id) DO UPDATE SET
                        display_name = EXCLUDED.display_name,
                        updated_at = NOW()
                    """,
                    str(user_id),
                    display_name,
                )

    async def load_identities(self) -> Dict[str, str]:
        async with _pg_operation("load_identities"):
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT user_id, display_name FROM identities ORDER BY updated_at ASC, user_id ASC"
                )
        return {str(row["user_id"]): str(row["display_name"]) for row in rows}
