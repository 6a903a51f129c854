from __future__ import annotations

from .storage.identity import MemoryIdentityMixin
from .storage.mood import MemoryMoodMixin
from .storage.schema import MemorySchemaMixin
from .storage.turns import MemoryTurnsMixin
from .storage.utils import _sqlite_memory_connection, _store_operation


class ContextStore(
    MemorySchemaMixin,
    MemoryTurnsMixin,
    MemoryMoodMixin,
    MemoryIdentityMixin,
):
    """SQLite-backed turn log with the mood singleton row and known display names."""

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with _store_operation("ping"), _sqlite_memory_connection(self.db_path) as db:
            await db.execute("SELECT 1")

    async def close(self) -> None:
        # Connections are opened per operation.
        return None
