from __future__ import annotations

from typing import Callable, Sequence

from .codec import platform_mention
from .models import Turn

TURN_SEPARATOR = "-----"
FOCUS_MARKER = "[CURRENT FOCUS]"
OLDER_MARKER = "[OLDER]"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

SpeakerTag = Callable[[str], str]


def chronological(turns: Sequence[Turn]) -> list[Turn]:
    return sorted(turns, key=lambda turn: (turn.timestamp, turn.id or 0))


def _recency_marker(rank_from_newest: int, focus_turns: int) -> str:
    if focus_turns <= 0:
        return ""
    return FOCUS_MARKER if rank_from_newest < focus_turns else OLDER_MARKER


def _turn_lines(turn: Turn, marker: str, bot_label: str, speaker_tag: SpeakerTag) -> list[str]:
    stamp = turn.timestamp.strftime(TIMESTAMP_FORMAT)
    prefix = f"{marker} " if marker else ""
    lines: list[str] = []
    if (turn.user_text or "").strip():
        lines.append(f"{prefix}[{stamp}] {speaker_tag(turn.sender_id)}: {turn.user_text.strip()}")
        prefix = ""
    if (turn.bot_text or "").strip():
        lines.append(f"{prefix}[{stamp}] {bot_label}: {turn.bot_text.strip()}")
    return lines


def keep_tail(text: str, cap_chars: int) -> str:
    if cap_chars <= 0:
        return ""
    if len(text) <= cap_chars:
        return text
    return text[len(text) - cap_chars :]


def render(
    turns: Sequence[Turn],
    cap_chars: int,
    *,
    bot_label: str = "You",
    speaker_tag: SpeakerTag = platform_mention,
    focus_turns: int = 0,
) -> str:
    """Render turns oldest-first as a delimited transcript capped to the newest ``cap_chars``."""
    ordered = chronological(turns)
    total = len(ordered)
    blocks: list[str] = []
    for index, turn in enumerate(ordered):
        marker = _recency_marker(total - 1 - index, focus_turns)
        lines = _turn_lines(turn, marker, bot_label, speaker_tag)
        if lines:
            blocks.append("\n".join(lines))
    return keep_tail(f"\n{TURN_SEPARATOR}\n".join(blocks), cap_chars)


def render_turn_list(
    turns: Sequence[Turn],
    cap_chars: int,
    *,
    speaker_tag: SpeakerTag = platform_mention,
    focus_turns: int = 0,
) -> list[dict[str, str]]:
    """Role-tagged variant of :func:`render`; the content budget is spent newest-first."""
    ordered = chronological(turns)
    total = len(ordered)
    messages: list[dict[str, str]] = []
    for index, turn in enumerate(ordered):
        marker = _recency_marker(total - 1 - index, focus_turns)
        prefix = f"{marker} " if marker else ""
        stamp = turn.timestamp.strftime(TIMESTAMP_FORMAT)
        if (turn.user_text or "").strip():
            messages.append(
                {
                    "role": "user",
                    "content": f"{prefix}[{stamp}] {speaker_tag(turn.sender_id)}: {turn.user_text.strip()}",
                }
            )
        if (turn.bot_text or "").strip():
            messages.append({"role": "assistant", "content": turn.bot_text.strip()})

    budget = max(0, int(cap_chars))
    kept: list[dict[str, str]] = []
    for message in reversed(messages):
        if budget <= 0:
            break
        content = message["content"]
        if len(content) > budget:
            content = keep_tail(content, budget)
        kept.append({"role": message["role"], "content": content})
        budget -= len(content)
    kept.reverse()
    return kept
