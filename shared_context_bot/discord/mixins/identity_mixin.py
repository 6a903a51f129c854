from __future__ import annotations

import logging
import re

import discord

from ...errors import StoreError
from ..common import collapse_spaces, has_broadcast_token

logger = logging.getLogger("shared_context_bot.discord")


class IdentityMixin:
    def _mentions_bot(self, message: discord.Message) -> bool:
        if message.guild is None:
            return True
        if not self.user:
            return False
        # mentioned_in() is also true for @everyone, which is handled separately.
        return any(getattr(user, "id", None) == self.user.id for user in message.mentions)

    @staticmethod
    def _is_broadcast(message: discord.Message) -> bool:
        return bool(getattr(message, "mention_everyone", False)) or has_broadcast_token(message.content)

    def _strip_bot_mention(self, text: str) -> str:
        if not self.user:
            return collapse_spaces(text)
        pattern = re.compile(rf"<@!?{self.user.id}>")
        return collapse_spaces(pattern.sub("", text))

    @staticmethod
    def _display_name(user: discord.abc.User) -> str:
        for attr in ("display_name", "global_name", "name"):
            value = getattr(user, attr, None)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    async def _remember_identities(self, message: discord.Message) -> None:
        users = [message.author, *message.mentions]
        for user in users:
            user_id = str(user.id)
            if self.user and user.id == self.user.id:
                continue
            name = self._display_name(user)
            if not self.identities.remember(user_id, name):
                continue
            try:
                await self.store.upsert_identity(user_id, self.identities.display_name(user_id) or name)
            except StoreError as exc:
                logger.warning("[identity] could not persist name for %s: %s", user_id, exc)
