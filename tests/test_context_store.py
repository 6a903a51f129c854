from __future__ import annotations

import asyncio
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared_context_bot.context.models import MoodState, Turn  # noqa: E402
from shared_context_bot.errors import StoreError  # noqa: E402
from shared_context_bot.memory.factory import build_context_store  # noqa: E402
from shared_context_bot.memory.postgres_store import _pg_operation  # noqa: E402
from shared_context_bot.memory.store import ContextStore  # noqa: E402

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _turn(index: int, *, scope_key: str = "global", offset_seconds: int | None = None) -> Turn:
    seconds = index if offset_seconds is None else offset_seconds
    return Turn(
        scope_key=scope_key,
        sender_id=str(100 + index),
        user_text=f"message {index}",
        bot_text=f"reply {index}",
        timestamp=BASE_TIME + timedelta(seconds=seconds),
    )


async def _fresh_store(tmp_path: Path) -> ContextStore:
    store = ContextStore(tmp_path / "context.sqlite")
    await store.init()
    return store


def test_recent_turns_on_empty_store_is_empty(tmp_path: Path) -> None:
    async def _run() -> list[Turn]:
        store = await _fresh_store(tmp_path)
        return await store.recent_turns("global", 20)

    assert asyncio.run(_run()) == []


def test_recent_turns_returns_newest_first_and_respects_limit(tmp_path: Path) -> None:
    async def _run() -> list[Turn]:
        store = await _fresh_store(tmp_path)
        for index in (3, 0, 4, 1, 2):
            await store.append(_turn(index))
        return await store.recent_turns("global", 3)

    turns = asyncio.run(_run())

    assert len(turns) == 3
    assert [turn.user_text for turn in turns] == ["message 4", "message 3", "message 2"]
    stamps = [turn.timestamp for turn in turns]
    assert stamps == sorted(stamps, reverse=True)
    assert all(turn.id is not None for turn in turns)


def test_equal_timestamps_fall_back_to_insertion_order(tmp_path: Path) -> None:
    async def _run() -> tuple[list[int], list[Turn]]:
        store = await _fresh_store(tmp_path)
        ids = [await store.append(_turn(index, offset_seconds=0)) for index in range(3)]
        return ids, await store.recent_turns("global", 3)

    ids, turns = asyncio.run(_run())

    assert [turn.id for turn in turns] == list(reversed(ids))


def test_append_round_trips_fields(tmp_path: Path) -> None:
    async def _run() -> list[Turn]:
        store = await _fresh_store(tmp_path)
        await store.append(
            Turn(scope_key="global", sender_id="42", user_text="ping <@7>", bot_text=None, timestamp=BASE_TIME)
        )
        return await store.recent_turns("global", 1)

    (turn,) = asyncio.run(_run())

    assert turn.sender_id == "42"
    assert turn.user_text == "ping <@7>"
    assert turn.bot_text is None
    assert turn.timestamp == BASE_TIME


def test_prune_keeps_only_most_recent(tmp_path: Path) -> None:
    async def _run() -> tuple[int, list[Turn], int]:
        store = await _fresh_store(tmp_path)
        for index in range(10):
            await store.append(_turn(index))
        removed = await store.prune("global", 4)
        return removed, await store.recent_turns("global", 5), await store.count_turns("global")

    removed, turns, count = asyncio.run(_run())

    assert removed == 6
    assert count == 4
    assert len(turns) <= 4
    assert [turn.user_text for turn in turns] == ["message 9", "message 8", "message 7", "message 6"]


def test_prune_with_zero_keep_clears_scope(tmp_path: Path) -> None:
    async def _run() -> int:
        store = await _fresh_store(tmp_path)
        for index in range(3):
            await store.append(_turn(index))
        await store.prune("global", 0)
        return await store.count_turns("global")

    assert asyncio.run(_run()) == 0


def test_prune_rejects_negative_keep(tmp_path: Path) -> None:
    async def _run() -> None:
        store = await _fresh_store(tmp_path)
        await store.prune("global", -1)

    with pytest.raises(ValueError):
        asyncio.run(_run())


def test_scopes_are_isolated(tmp_path: Path) -> None:
    async def _run() -> tuple[list[Turn], list[Turn], int]:
        store = await _fresh_store(tmp_path)
        for index in range(3):
            await store.append(_turn(index, scope_key="channel:1"))
        await store.append(_turn(7, scope_key="channel:2"))
        removed = await store.prune("channel:2", 0)
        return (
            await store.recent_turns("channel:1", 10),
            await store.recent_turns("channel:2", 10),
            removed,
        )

    first, second, removed = asyncio.run(_run())

    assert len(first) == 3
    assert all(turn.scope_key == "channel:1" for turn in first)
    assert second == []
    assert removed == 1


def test_concurrent_appends_all_land(tmp_path: Path) -> None:
    async def _run() -> int:
        store = await _fresh_store(tmp_path)
        await asyncio.gather(*(store.append(_turn(index)) for index in range(12)))
        return await store.count_turns("global")

    assert asyncio.run(_run()) == 12


def test_mood_state_defaults_and_upserts(tmp_path: Path) -> None:
    async def _run() -> tuple[MoodState, MoodState]:
        store = await _fresh_store(tmp_path)
        initial = await store.get_mood_state()
        await store.save_mood_state(MoodState(score=3, label="Cheerful", last_update=date(2024, 5, 1)))
        await store.save_mood_state(MoodState(score=4, label="Playful", last_update=date(2024, 5, 2)))
        return initial, await store.get_mood_state()

    initial, saved = asyncio.run(_run())

    assert initial == MoodState()
    assert saved == MoodState(score=4, label="Playful", last_update=date(2024, 5, 2))


def test_identities_last_write_wins(tmp_path: Path) -> None:
    async def _run() -> dict[str, str]:
        store = await _fresh_store(tmp_path)
        await store.upsert_identity("1", "Alice")
        await store.upsert_identity("2", "Bob")
        await store.upsert_identity("1", "Alicia")
        return await store.load_identities()

    assert asyncio.run(_run()) == {"1": "Alicia", "2": "Bob"}


def test_backend_failure_is_reported_as_store_error(tmp_path: Path) -> None:
    async def _run() -> None:
        store = ContextStore(tmp_path / "never_initialized.sqlite")
        await store.recent_turns("global", 5)

    with pytest.raises(StoreError) as excinfo:
        asyncio.run(_run())
    assert excinfo.value.operation == "recent_turns"


def test_store_factory_selects_backend(tmp_path: Path) -> None:
    store = build_context_store("sqlite", tmp_path / "context.sqlite")
    assert isinstance(store, ContextStore)

    with pytest.raises(ValueError, match="MEMORY_POSTGRES_DSN"):
        build_context_store("postgres", tmp_path / "context.sqlite", "")
    with pytest.raises(ValueError, match="MEMORY_BACKEND"):
        build_context_store("redis", tmp_path / "context.sqlite")


def test_postgres_command_timeout_becomes_store_error() -> None:
    async def _run() -> None:
        async with _pg_operation("get_mood_state"):
            raise asyncio.TimeoutError()

    with pytest.raises(StoreError) as excinfo:
        asyncio.run(_run())
    assert excinfo.value.operation == "get_mood_state"
