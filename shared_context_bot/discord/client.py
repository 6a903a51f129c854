from __future__ import annotations

import asyncio
import logging
from typing import Any

import discord

from ..config import Settings
from ..context.identity import IdentityDirectory
from ..dialogue.orchestrator import ResponseOrchestrator
from ..errors import StoreError
from ..services.base import BaseChatClient
from .mixins import IdentityMixin, MessageMixin

logger = logging.getLogger("shared_context_bot")


class SharedContextDiscordBot(
    IdentityMixin,
    MessageMixin,
    discord.Client,
):
    def __init__(
        self,
        settings: Settings,
        store: Any,
        llm: BaseChatClient,
        orchestrator: ResponseOrchestrator,
        identities: IdentityDirectory,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = settings.discord_message_content_intent
        intents.members = settings.discord_members_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.store = store
        self.llm = llm
        self.orchestrator = orchestrator
        self.identities = identities

    async def setup_hook(self) -> None:
        await self.store.init()
        await self.llm.start()
        try:
            known = await self.store.load_identities()
        except StoreError as exc:
            logger.warning("Could not load saved identities: %s", exc)
            return
        self.identities.load(known)
        logger.info("Loaded %s known identities", len(known))

    async def close(self) -> None:
        await self._run_shutdown_step("orchestrator.wait_background", self.orchestrator.wait_background(), timeout=6.0)
        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("store.close", self.store.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def on_ready(self) -> None:
        if self.user:
            bot_id = str(self.user.id)
            self.identities.bot_id = bot_id
            self.identities.remember(bot_id, self.orchestrator.persona.bot_name)
            logger.info("Connected as %s (%s)", self.user, self.user.id)
