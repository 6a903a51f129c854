from __future__ import annotations

import aiosqlite

from ...context.models import MoodState
from .utils import _sqlite_memory_connection, _store_operation, parse_date


class MemoryMoodMixin:
    async def get_mood_state(self) -> MoodState:
        async with _store_operation("get_mood_state"), _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT mood_score, mood_label, last_update FROM mood_state WHERE id = 1"
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return MoodState()
        return MoodState(
            score=int(row["mood_score"] or 0),
            label=str(row["mood_label"] or ""),
            last_update=parse_date(row["last_update"]),
        )

    async def save_mood_state(self, state: MoodState) -> None:
        async with _store_operation("save_mood_state"), _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO mood_state (id, mood_score, mood_label, last_update)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    mood_score = excluded.mood_score,
                    mood_label = excluded.mood_label,
                    last_update = excluded.last_update
                """,
                (
                    int(state.score),
                    state.label,
                    state.last_update.isoformat() if state.last_update else None,
                ),
            )
            await db.commit()
