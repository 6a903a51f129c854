from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from ..errors import ClassificationError, CompletionError
from ..prompts.dialogue import build_classifier_system_prompt
from ..prompts.tone import (
    CLASSIFIER_LABELS,
    classifier_flavors,
    daily_moods,
    score_moods,
    time_of_day_tones,
)
from .models import MOOD_SCORE_MAX, MOOD_SCORE_MIN, MoodState, clamp_mood_score

logger = logging.getLogger("shared_context_bot.mood")

TONE_STRATEGIES = ("classifier", "score", "time_of_day", "daily")

_SCORE_DELTAS = {
    "positive": 1,
    "negative": -1,
    "angry": -1,
}


class _ChatBackend(Protocol):
    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        *,
        web_search: bool = False,
    ) -> str: ...


@dataclass(slots=True)
class ToneSelection:
    tone: str
    label: str | None = None
    mood: MoodState | None = None
    fallback: bool = False


class SentimentClassifier:
    def __init__(self, llm: _ChatBackend, model: str | None = None, timeout_seconds: float = 15.0) -> None:
        self.llm = llm
        self.model = model or None
        self.timeout_seconds = float(timeout_seconds)

    @staticmethod
    def parse_label(raw: str) -> str | None:
        for token in re.findall(r"[a-z]+", (raw or "").casefold()):
            if token in CLASSIFIER_LABELS:
                return token
        return None

    async def classify(self, text: str) -> str:
        messages = [
            {"role": "system", "content": build_classifier_system_prompt(CLASSIFIER_LABELS)},
            {"role": "user", "content": text},
        ]
        try:
            raw = await asyncio.wait_for(self.llm.chat(messages, model=self.model), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ClassificationError("classification call timed out") from exc
        except CompletionError as exc:
            raise ClassificationError(f"classification call failed: {exc}") from exc
        label = self.parse_label(raw)
        if label is None:
            raise ClassificationError(f"unrecognized classification {raw!r}")
        return label


def flavor_for_label(label: str) -> str:
    flavors = classifier_flavors()
    return flavors.get(label, flavors.get("neutral", "calm and even"))


def apply_classification(score: int, label: str) -> int:
    return clamp_mood_score(score + _SCORE_DELTAS.get(label, 0))


def mood_label_for_score(score: int) -> str:
    table = score_moods()
    return table[clamp_mood_score(score) - MOOD_SCORE_MIN]


def time_bucket(hour: int) -> str:
    hour = int(hour) % 24
    if 5 <= hour <= 11:
        return "morning"
    if 12 <= hour <= 16:
        return "afternoon"
    if 17 <= hour <= 21:
        return "evening"
    return "night"


def tone_for_hour(hour: int) -> str:
    return time_of_day_tones()[time_bucket(hour)]


class ClassifierToneStrategy:
    """Tone derived fresh from the sentiment of the incoming message."""

    stateful = False

    def __init__(self, classifier: SentimentClassifier, default_tone: str) -> None:
        self.classifier = classifier
        self.default_tone = default_tone

    async def select(self, user_text: str, now: datetime, mood: MoodState | None) -> ToneSelection:
        try:
            label = await self.classifier.classify(user_text)
        except ClassificationError as exc:
            logger.warning("[mood] classifier fallback to default tone: %s", exc)
            return ToneSelection(tone=self.default_tone, fallback=True)
        return ToneSelection(tone=flavor_for_label(label), label=label)


class ScoreToneStrategy:
    """Persistent mood score nudged by each classified message."""

    stateful = True

    def __init__(self, classifier: SentimentClassifier, default_tone: str) -> None:
        self.classifier = classifier
        self.default_tone = default_tone

    async def select(self, user_text: str, now: datetime, mood: MoodState | None) -> ToneSelection:
        state = mood if mood is not None else MoodState()
        try:
            label = await self.classifier.classify(user_text)
        except ClassificationError as exc:
            logger.warning("[mood] score unchanged, using default tone: %s", exc)
            return ToneSelection(tone=self.default_tone, fallback=True)

        score = apply_classification(state.score, label)
        updated = MoodState(score=score, label=mood_label_for_score(score), last_update=now.date())
        if score != state.score:
            logger.info("[mood] score %s -> %s (%s)", state.score, score, label)
        return ToneSelection(tone=updated.label, label=label, mood=updated)


class TimeOfDayToneStrategy:
    stateful = False

    async def select(self, user_text: str, now: datetime, mood: MoodState | None) -> ToneSelection:
        return ToneSelection(tone=tone_for_hour(now.astimezone().hour))


class DailyMoodStrategy:
    """One random mood per calendar day, kept in the mood row until the date changes."""

    stateful = True

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    async def select(self, user_text: str, now: datetime, mood: MoodState | None) -> ToneSelection:
        today = now.astimezone().date()
        if mood is not None and mood.last_update == today and mood.label:
            return ToneSelection(tone=mood.label)
        label = self.rng.choice(daily_moods())
        logger.info("[mood] new daily mood: %s", label)
        updated = MoodState(score=mood.score if mood else 0, label=label, last_update=today)
        return ToneSelection(tone=label, mood=updated)


ToneStrategy = ClassifierToneStrategy | ScoreToneStrategy | TimeOfDayToneStrategy | DailyMoodStrategy


def build_tone_strategy(
    name: str,
    *,
    llm: _ChatBackend,
    default_tone: str,
    classifier_model: str | None = None,
    classifier_timeout_seconds: float = 15.0,
    rng: random.Random | None = None,
) -> ToneStrategy:
    key = (name or "").strip().lower()
    if key == "time_of_day":
        return TimeOfDayToneStrategy()
    if key == "daily":
        return DailyMoodStrategy(rng=rng)
    classifier = SentimentClassifier(llm, model=classifier_model, timeout_seconds=classifier_timeout_seconds)
    if key == "classifier":
        return ClassifierToneStrategy(classifier, default_tone)
    if key == "score":
        return ScoreToneStrategy(classifier, default_tone)
    raise ValueError(f"Unknown tone strategy: {name!r} (expected one of {', '.join(TONE_STRATEGIES)})")


__all__ = [
    "MOOD_SCORE_MAX",
    "MOOD_SCORE_MIN",
    "TONE_STRATEGIES",
    "ClassifierToneStrategy",
    "DailyMoodStrategy",
    "ScoreToneStrategy",
    "SentimentClassifier",
    "TimeOfDayToneStrategy",
    "ToneSelection",
    "ToneStrategy",
    "apply_classification",
    "build_tone_strategy",
    "flavor_for_label",
    "mood_label_for_score",
    "time_bucket",
    "tone_for_hour",
]
