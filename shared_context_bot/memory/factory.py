from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Union

from .store import ContextStore

if TYPE_CHECKING:
    from .postgres_store import PostgresContextStore

MEMORY_BACKENDS = ("sqlite", "postgres")


def _resolve_backend(backend: str) -> str:
    value = (backend or "sqlite").strip().lower()
    if value in MEMORY_BACKENDS:
        return value
    raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")


def build_context_store(
    backend: str,
    sqlite_path: Path,
    postgres_dsn: str = "",
) -> Union[ContextStore, "PostgresContextStore"]:
    resolved = _resolve_backend(backend)
    if resolved == "sqlite":
        return ContextStore(sqlite_path)

    if not postgres_dsn.strip():
        raise ValueError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")

    from .postgres_store import PostgresContextStore

    return PostgresContextStore(postgres_dsn)
