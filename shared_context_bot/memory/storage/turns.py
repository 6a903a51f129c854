from __future__ import annotations

from typing import List

import aiosqlite

from ...context.models import Turn
from .utils import (
    _sqlite_memory_connection,
    _store_operation,
    format_timestamp,
    parse_timestamp,
    validate_keep,
)


def _row_to_turn(row: aiosqlite.Row) -> Turn:
    return Turn(
        id=int(row["id"]),
        scope_key=str(row["scope_key"]),
        sender_id=str(row["sender_id"]),
        user_text=row["user_text"],
        bot_text=row["bot_text"],
        timestamp=parse_timestamp(row["timestamp"]),
    )


class MemoryTurnsMixin:
    async def append(self, turn: Turn) -> int:
        async with self._scope_locks[turn.scope_key]:
            async with _store_operation("append"), _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO turns (scope_key, sender_id, user_text, bot_text, timestamp)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        turn.scope_key,
                        turn.sender_id,
                        turn.user_text,
                        turn.bot_text,
                        format_timestamp(turn.timestamp),
                    ),
                )
                await db.commit()
                return int(cursor.lastrowid)

    async def recent_turns(self, scope_key: str, limit: int) -> List[Turn]:
        if int(limit) <= 0:
            return []
        async with _store_operation("recent_turns"), _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, scope_key, sender_id, user_text, bot_text, timestamp
                FROM turns
                WHERE scope_key = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (scope_key, int(limit)),
            ) as cursor:
                rows = await cursor.fetchall()
            return [_row_to_turn(row) for row in rows]

    async def prune(self, scope_key: str, keep: int) -> int:
        keep = validate_keep(keep)
        async with self._scope_locks[scope_key]:
            async with _store_operation("prune"), _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute(
                    """
                    DELETE FROM turns
                    WHERE scope_key = ?
                      AND id NOT IN (
                        SELECT id
                        FROM turns
                        WHERE scope_key = ?
                        ORDER BY timestamp DESC, id DESC
                        LIMIT ?
                      )
                    """,
                    (scope_key, scope_key, keep),
                )
                await db.commit()
                return max(0, int(cursor.rowcount))

    async def count_turns(self, scope_key: str) -> int:
        async with _store_operation("count_turns"), _sqlite_memory_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM turns WHERE scope_key = ?", (scope_key,)) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
