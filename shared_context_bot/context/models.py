from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone

BOT_SENDER_ID = "bot"

MOOD_SCORE_MIN = -10
MOOD_SCORE_MAX = 10


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def clamp_mood_score(score: int) -> int:
    return max(MOOD_SCORE_MIN, min(MOOD_SCORE_MAX, int(score)))


@dataclass(frozen=True, slots=True)
class Turn:
    """One exchange unit: a user message and/or the bot's reply to it."""

    scope_key: str
    sender_id: str
    user_text: str | None = None
    bot_text: str | None = None
    timestamp: datetime = field(default_factory=utc_now)
    id: int | None = None

    def __post_init__(self) -> None:
        if not (self.user_text or "").strip() and not (self.bot_text or "").strip():
            raise ValueError("Turn needs a non-empty user_text or bot_text")


@dataclass(slots=True)
class MoodState:
    score: int = 0
    label: str = ""
    last_update: date | None = None

    def __post_init__(self) -> None:
        self.score = clamp_mood_score(self.score)


def scope_key_for(scope: str, *, channel_id: str | None, sender_id: str) -> str:
    mode = (scope or "global").strip().lower()
    if mode == "channel" and channel_id:
        return f"channel:{channel_id}"
    if mode == "user":
        return f"user:{sender_id}"
    return "global"
