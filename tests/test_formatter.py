from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared_context_bot.context.formatter import (  # noqa: E402
    FOCUS_MARKER,
    OLDER_MARKER,
    TURN_SEPARATOR,
    render,
    render_turn_list,
)
from shared_context_bot.context.models import Turn  # noqa: E402

BASE_TIME = datetime(2024, 5, 1, 9, 30, 0, tzinfo=timezone.utc)


def _turns(count: int) -> list[Turn]:
    return [
        Turn(
            scope_key="global",
            sender_id=str(10 + index),
            user_text=f"question {index}",
            bot_text=f"answer {index}",
            timestamp=BASE_TIME + timedelta(minutes=index),
            id=index + 1,
        )
        for index in range(count)
    ]


def test_render_is_chronological_regardless_of_input_order() -> None:
    turns = _turns(3)
    text = render(list(reversed(turns)), 4000)

    assert text.index("question 0") < text.index("question 1") < text.index("question 2")
    assert text.count(f"\n{TURN_SEPARATOR}\n") == 2


def test_render_line_shape() -> None:
    text = render(_turns(1), 4000)

    assert text == "[2024-05-01 09:30:00] <@10>: question 0\n[2024-05-01 09:30:00] You: answer 0"


def test_render_skips_missing_sides() -> None:
    turn = Turn(scope_key="global", sender_id="5", user_text=None, bot_text="hello all", timestamp=BASE_TIME)
    text = render([turn], 4000, bot_label="Pip")

    assert text == "[2024-05-01 09:30:00] Pip: hello all"


@pytest.mark.parametrize("cap", [1, 17, 64, 200])
def test_render_overflow_keeps_exact_tail(cap: int) -> None:
    turns = _turns(8)
    full = render(turns, 100000)
    capped = render(turns, cap)

    assert len(full) > cap
    assert len(capped) == cap
    assert capped == full[-cap:]


def test_render_within_cap_is_untouched() -> None:
    turns = _turns(2)
    full = render(turns, 100000)

    assert render(turns, len(full)) == full


def test_render_of_nothing_is_empty() -> None:
    assert render([], 4000) == ""


def test_focus_markers_tag_newest_turns() -> None:
    text = render(_turns(4), 4000, focus_turns=2)
    blocks = text.split(f"\n{TURN_SEPARATOR}\n")

    assert [block.startswith(FOCUS_MARKER) for block in blocks] == [False, False, True, True]
    assert [block.startswith(OLDER_MARKER) for block in blocks] == [True, True, False, False]


def test_custom_speaker_tag_is_used() -> None:
    text = render(_turns(1), 4000, speaker_tag=lambda sender_id: f"<user{sender_id}>")

    assert "<user10>: question 0" in text


def test_turn_list_roles_and_budget() -> None:
    turns = _turns(5)
    messages = render_turn_list(turns, 4000)

    assert [message["role"] for message in messages] == ["user", "assistant"] * 5
    assert messages[-1]["content"] == "answer 4"

    capped = render_turn_list(turns, 60)
    assert sum(len(message["content"]) for message in capped) <= 60
    assert capped[-1]["content"] == "answer 4"
    assert capped[0]["content"] == messages[len(messages) - len(capped)]["content"][-len(capped[0]["content"]) :]
