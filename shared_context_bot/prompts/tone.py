from __future__ import annotations

from typing import Any

from .json_loader import load_prompt_json

CLASSIFIER_LABELS: tuple[str, ...] = ("positive", "neutral", "negative", "sarcastic", "angry")

_DEFAULTS: dict[str, Any] = {
    "classifier_flavors": {
        "positive": "cheerful and warm",
        "neutral": "calm and even",
        "negative": "gentle and supportive",
        "sarcastic": "dry and playful",
        "angry": "patient and de-escalating",
    },
    # Index 0 is score -10, index 20 is score +10.
    "score_moods": [
        "furious and barely holding it together",
        "livid",
        "bitter and snappy",
        "deeply irritated",
        "grumpy",
        "annoyed",
        "cranky",
        "sulky",
        "a little gloomy",
        "mildly unimpressed",
        "neutral and composed",
        "mildly pleased",
        "content",
        "friendly",
        "cheerful",
        "upbeat",
        "playful",
        "delighted",
        "bubbly and excited",
        "overjoyed",
        "radiantly ecstatic",
    ],
    "time_of_day": {
        "morning": "fresh and a bit drowsy, easing into the day",
        "afternoon": "focused and energetic",
        "evening": "relaxed and chatty",
        "night": "sleepy and quiet",
    },
    "daily_moods": [
        "You exude self-assurance and arrogance.",
        "You are cute.",
        "You are sweet and kind.",
        "You are sarcastic.",
        "You are grumpy.",
        "You are happy and cheerful.",
        "You are whimsical and silly.",
        "You are flirty.",
        "You are shy, timid and unsure of yourself.",
        "You are mocking and condescending.",
        "You are annoyed.",
        "You are sad.",
        "You are sleepy.",
        "You are energetic.",
        "You are feeling cryptic.",
    ],
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("tone.json", _DEFAULTS)


def classifier_flavors() -> dict[str, str]:
    raw = _cfg().get("classifier_flavors")
    table = raw if isinstance(raw, dict) else _DEFAULTS["classifier_flavors"]
    return {str(key).strip().lower(): str(value) for key, value in table.items()}


def score_moods() -> tuple[str, ...]:
    raw = _cfg().get("score_moods")
    if not isinstance(raw, list) or len(raw) != 21:
        raw = _DEFAULTS["score_moods"]
    return tuple(str(item) for item in raw)


def time_of_day_tones() -> dict[str, str]:
    raw = _cfg().get("time_of_day")
    table = raw if isinstance(raw, dict) else _DEFAULTS["time_of_day"]
    merged = dict(_DEFAULTS["time_of_day"])
    merged.update({str(key): str(value) for key, value in table.items()})
    return merged


def daily_moods() -> tuple[str, ...]:
    raw = _cfg().get("daily_moods")
    items = [str(item).strip() for item in raw] if isinstance(raw, list) else []
    items = [item for item in items if item]
    return tuple(items or _DEFAULTS["daily_moods"])
