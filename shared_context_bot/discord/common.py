from __future__ import annotations

import re

DISCORD_MESSAGE_LIMIT = 1900
BROADCAST_TOKENS = ("@everyone", "@here")


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def chunk_text(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> list[str]:
    """Split a reply into Discord-sized pieces, preferring line breaks as cut points."""
    chunks: list[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit) + 1
        if cut <= 0:
            cut = limit
        chunks.append(rest[:cut])
        rest = rest[cut:]
    if rest or not chunks:
        chunks.append(rest)
    return chunks


def has_broadcast_token(text: str) -> bool:
    lowered = (text or "").casefold()
    return any(token in lowered for token in BROADCAST_TOKENS)
