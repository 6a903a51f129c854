"""Translation between platform mention tokens and the display form used in prompts.

The platform writes a user mention as ``<@123456>`` (or ``<@!123456>`` for the legacy
nickname form). Models handle names better than long numeric ids, so prompts carry
``<DisplayName>`` instead and the reply is mapped back before it is sent.

The round trip is lossy on purpose: two users may share a display name, and the
model may emit a bracketed name nobody owns. Such names are left as literal text.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from ..errors import ResolutionError

logger = logging.getLogger("shared_context_bot.codec")

MENTION_PATTERN = re.compile(r"<@!?(\d+)>")
UNKNOWN_USER_PATTERN = re.compile(r"<UnknownUser:(\d+)>")
DISPLAY_NAME_PATTERN = re.compile(r"<([^<>@\n]{1,64})>")

DisplayNameResolver = Callable[[str], "str | None"]
IdResolver = Callable[[str], "str | None"]


def sanitize_display_name(name: str) -> str:
    cleaned = re.sub(r"[<>@]", "", name or "")
    return " ".join(cleaned.split())[:64]


def platform_mention(user_id: str) -> str:
    return f"<@{user_id}>"


def _safe_resolve(resolver: Callable[[str], str | None], key: str) -> str | None:
    try:
        value = resolver(key)
    except Exception as exc:
        error = ResolutionError(f"resolver failed for {key!r}: {exc}")
        logger.warning("[codec] %s", error)
        return None
    return value


def encode_for_model(text: str, resolve_display_name: DisplayNameResolver) -> str:
    def _replace(match: re.Match[str]) -> str:
        user_id = match.group(1)
        name = sanitize_display_name(_safe_resolve(resolve_display_name, user_id) or "")
        if not name or name.startswith("UnknownUser:"):
            return f"<UnknownUser:{user_id}>"
        return f"<{name}>"

    return MENTION_PATTERN.sub(_replace, text or "")


def decode_from_model(text: str, resolve_id: IdResolver) -> str:
    restored = UNKNOWN_USER_PATTERN.sub(lambda m: platform_mention(m.group(1)), text or "")

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        if not name:
            return match.group(0)
        user_id = _safe_resolve(resolve_id, name)
        if not user_id or not str(user_id).isdigit():
            return match.group(0)
        return platform_mention(str(user_id))

    return DISPLAY_NAME_PATTERN.sub(_replace, restored)
