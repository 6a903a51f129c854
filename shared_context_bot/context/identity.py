from __future__ import annotations

from typing import Mapping

from .codec import sanitize_display_name


class IdentityDirectory:
    """In-memory id <-> display name map used by the mention codec.

    Names are matched case-insensitively and the latest registration wins, so an
    ambiguous name resolves to whoever spoke under it most recently.
    """

    def __init__(self, bot_id: str | None = None, bot_name: str = "") -> None:
        self._names: dict[str, str] = {}
        self._ids: dict[str, str] = {}
        self.bot_id = bot_id
        if bot_id and bot_name:
            self.remember(bot_id, bot_name)

    def __len__(self) -> int:
        return len(self._names)

    def remember(self, user_id: str, display_name: str) -> bool:
        key = str(user_id).strip()
        name = sanitize_display_name(display_name)
        if not key or not name:
            return False
        previous = self._names.get(key)
        if previous and previous.casefold() != name.casefold():
            if self._ids.get(previous.casefold()) == key:
                self._ids.pop(previous.casefold(), None)
        self._names[key] = name
        self._ids[name.casefold()] = key
        return previous != name

    def load(self, identities: Mapping[str, str]) -> None:
        for user_id, name in identities.items():
            self.remember(user_id, name)

    def display_name(self, user_id: str) -> str | None:
        return self._names.get(str(user_id).strip())

    def user_id_for(self, display_name: str) -> str | None:
        return self._ids.get(sanitize_display_name(display_name).casefold())
