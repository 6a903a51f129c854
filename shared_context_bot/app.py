from __future__ import annotations

import asyncio
import contextlib
import logging
import random

from .config import Settings
from .context.identity import IdentityDirectory
from .context.mood import build_tone_strategy
from .dialogue.orchestrator import ResponseOrchestrator
from .discord.client import SharedContextDiscordBot
from .memory.factory import build_context_store
from .services.factory import build_completion_client

logger = logging.getLogger("shared_context_bot")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_bot(settings: Settings) -> SharedContextDiscordBot:
    persona = settings.persona()
    store = build_context_store(settings.memory_backend, settings.sqlite_path, settings.memory_postgres_dsn)
    llm = build_completion_client(settings)
    tone_strategy = build_tone_strategy(
        persona.tone_strategy,
        llm=llm,
        default_tone=persona.default_tone,
        classifier_model=settings.classifier_model or None,
        classifier_timeout_seconds=settings.classifier_timeout_seconds,
        rng=random.Random(),
    )
    identities = IdentityDirectory(bot_name=persona.bot_name)
    orchestrator = ResponseOrchestrator(
        store=store,
        llm=llm,
        persona=persona,
        tone_strategy=tone_strategy,
        identities=identities,
        context_scope=settings.context_scope,
        retention_turns=settings.context_retention_turns,
        completion_timeout_seconds=settings.completion_timeout_seconds,
    )
    logger.info(
        "Persona %s: backend=%s store=%s tone=%s scope=%s window=%s cap=%s",
        persona.bot_name,
        settings.llm_backend,
        settings.memory_backend,
        persona.tone_strategy,
        settings.context_scope,
        persona.context_window_size,
        persona.cap_chars,
    )
    return SharedContextDiscordBot(
        settings=settings,
        store=store,
        llm=llm,
        orchestrator=orchestrator,
        identities=identities,
    )


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    settings.validate()
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
