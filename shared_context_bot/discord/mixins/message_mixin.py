from __future__ import annotations

import logging
from typing import Any

import discord

from ...dialogue.orchestrator import InboundMessage, TurnState
from ..common import chunk_text, collapse_spaces

logger = logging.getLogger("shared_context_bot.discord")


class MessageMixin:
    async def _send_chunks(
        self,
        channel: discord.abc.Messageable,
        text: str,
        reference: discord.Message | None = None,
    ) -> None:
        for index, chunk in enumerate(chunk_text(text)):
            kwargs: dict[str, Any] = {}
            if index == 0 and reference is not None:
                kwargs["reference"] = reference
            await channel.send(chunk, **kwargs)

    async def _referenced_message(self, message: discord.Message) -> discord.Message | None:
        reference = message.reference
        if reference is None or reference.message_id is None:
            return None
        resolved = reference.resolved
        if isinstance(resolved, discord.Message):
            return resolved
        try:
            return await message.channel.fetch_message(reference.message_id)
        except discord.HTTPException as exc:
            logger.debug("Referenced message %s unavailable: %s", reference.message_id, exc)
            return None

    async def _build_inbound(self, message: discord.Message) -> InboundMessage:
        inbound = InboundMessage(
            sender_id=str(message.author.id),
            text=self._strip_bot_mention(message.content),
            mentions_bot=self._mentions_bot(message),
            is_broadcast_mention=self._is_broadcast(message),
            channel_id=str(message.channel.id),
            sender_name=self._display_name(message.author) or None,
        )
        if not inbound.mentions_bot or inbound.is_broadcast_mention:
            return inbound

        referenced = await self._referenced_message(message)
        if referenced is not None:
            inbound.referenced_message_id = str(referenced.id)
            inbound.referenced_text = collapse_spaces(referenced.content) or None
        return inbound

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return

        inbound = await self._build_inbound(message)
        if not inbound.mentions_bot or inbound.is_broadcast_mention or not inbound.text:
            return

        await self._remember_identities(message)

        async def _reply(text: str) -> None:
            await self._send_chunks(message.channel, text, reference=message)

        try:
            async with message.channel.typing():
                outcome = await self.orchestrator.handle(inbound, _reply)
        except Exception as exc:
            logger.exception("Text turn failed: %s", exc)
            return
        if outcome.state is TurnState.FAILED and outcome.reply_text is None:
            logger.warning("Message %s from %s got no reply", message.id, message.author.id)
