from __future__ import annotations

from typing import Dict

from .utils import _sqlite_memory_connection, _store_operation


class MemoryIdentityMixin:
    async def upsert_identity(self, user_id: str, display_name: str) -> None:
        async with _store_operation("upsert_identity"), _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO identities (user_id, display_name, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(user_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (str(user_id), display_name),
            )
            await db.commit()

    async def load_identities(self) -> Dict[str, str]:
        async with _store_operation("load_identities"), _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT user_id, display_name FROM identities ORDER BY updated_at ASC, user_id ASC"
            ) as cursor:
                rows = await cursor.fetchall()
        return {str(row[0]): str(row[1]) for row in rows}
