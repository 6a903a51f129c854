from __future__ import annotations

import math
from typing import Any

from .json_loader import load_prompt_json

_DEFAULTS: dict[str, Any] = {
    "system_prompt_template": (
        "You are a tiny fairy named {bot_name}.\n"
        "This is your current mood: {tone}.\n"
        "Use emojis and emotes sparingly. If a situation doesn't call for one, don't force it.\n"
        "Do not use pet names or terms of endearment.\n"
        "Do not always ask follow-up questions.\n"
        "Keep your responses short and to the point.\n"
        "\n"
        "Here is the message history, oldest first, turns separated by '-----':\n"
        "{context}\n"
        "\n"
        "The messages include timestamps. Prioritize responding to the most recent one.\n"
        "Don't dwell on past topics unless they are directly relevant. When told to move on from a topic, do so.\n"
        "You speak with many different people. Each person is written as a name in angle brackets, like <Name>.\n"
        "The person you are currently talking to is {user_tag}.\n"
        "When you refer to another participant, write their name in angle brackets exactly as it appears in the history."
    ),
    "empty_context_placeholder": "(no earlier messages)",
    "turn_list_context_note": "(the earlier messages follow as separate chat turns)",
    "referenced_message_line_template": "The user is replying to this earlier message: {referenced_text}",
    "escalation_search_system_prompt": (
        "Answer the user's question accurately and concisely using up-to-date web results. "
        "Return plain facts without any persona or styling."
    ),
    "escalation_persona_template": (
        "Some research on the user's message found the following answer:\n"
        "{search_answer}\n"
        "Reply to the user in your own voice using this information. Do not mention that you searched."
    ),
    "replies": {
        "rate_limited_with_delay": "The service is currently unavailable. Please try again in {seconds} seconds.",
        "rate_limited": "The service is currently unavailable. Please try again in a little while.",
        "quota_exceeded": "I've used up all my words for now. Please try again later.",
        "generic_failure": "I'm feeling so sleepy... Try again later.",
        "empty_response": "I'm so sorry! I couldn't understand that.",
    },
    "classifier_system_prompt": (
        "Classify the emotional tone of the user's message. "
        "Answer with exactly one word from this list: {labels}."
    ),
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("dialogue.json", _DEFAULTS)


def _text(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def _reply(key: str) -> str:
    raw = _cfg().get("replies")
    replies = raw if isinstance(raw, dict) else _DEFAULTS["replies"]
    return str(replies.get(key, _DEFAULTS["replies"][key]))


def default_system_prompt_template() -> str:
    return _text("system_prompt_template")


def empty_context_placeholder() -> str:
    return _text("empty_context_placeholder")


def turn_list_context_note() -> str:
    return _text("turn_list_context_note")


def build_referenced_message_line(referenced_text: str) -> str:
    cleaned = referenced_text.strip()
    if not cleaned:
        return ""
    return _text("referenced_message_line_template").format(referenced_text=cleaned)


def escalation_search_system_prompt() -> str:
    return _text("escalation_search_system_prompt")


def build_escalation_persona_line(search_answer: str) -> str:
    return _text("escalation_persona_template").format(search_answer=search_answer.strip())


def build_classifier_system_prompt(labels: tuple[str, ...]) -> str:
    return _text("classifier_system_prompt").format(labels=", ".join(labels))


def build_rate_limited_reply(retry_after: float | None) -> str:
    if retry_after is None:
        return _reply("rate_limited")
    seconds = max(1, int(math.ceil(retry_after)))
    return _reply("rate_limited_with_delay").format(seconds=seconds)


def quota_exceeded_reply() -> str:
    return _reply("quota_exceeded")


def generic_failure_reply() -> str:
    return _reply("generic_failure")


def empty_response_reply() -> str:
    return _reply("empty_response")
