from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .prompts.dialogue import default_system_prompt_template
from .prompts.json_loader import load_json_overrides

load_dotenv()

LLM_BACKENDS = ("groq", "gemini", "ollama")
CONTEXT_SCOPES = ("global", "channel", "user")
CONTEXT_MODES = ("transcript", "turns")
TONE_STRATEGIES = ("classifier", "score", "time_of_day", "daily")
DEFAULT_FALLBACK_PHRASES = (
    "i don't know",
    "i do not know",
    "i'm not sure",
    "i am not sure",
)


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"﻿{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_phrases(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _env_lookup(name)
    if raw is None:
        return default
    # Phrases contain commas, so the list separator is "|".
    return tuple(chunk.strip() for chunk in raw.split("|") if chunk.strip())


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(frozen=True, slots=True)
class PersonaConfig:
    """Everything that varies between bot personas; one orchestrator serves them all."""

    bot_name: str = "Pip"
    system_prompt_template: str = field(default_factory=default_system_prompt_template)
    tone_strategy: str = "daily"
    default_tone: str = "calm and even"
    context_window_size: int = 20
    cap_chars: int = 4000
    context_mode: str = "transcript"
    focus_turns: int = 0
    fallback_phrases: tuple[str, ...] = DEFAULT_FALLBACK_PHRASES
    model: str | None = None
    escalation_enabled: bool = False
    escalation_model: str | None = None

    def validate(self) -> None:
        if not self.bot_name.strip():
            raise ValueError("BOT_NAME cannot be empty")
        if not self.system_prompt_template.strip():
            raise ValueError("Persona system prompt template cannot be empty")
        if self.tone_strategy not in TONE_STRATEGIES:
            raise ValueError(f"TONE_STRATEGY must be one of: {', '.join(TONE_STRATEGIES)}")
        if not self.default_tone.strip():
            raise ValueError("DEFAULT_TONE cannot be empty")
        if self.context_window_size < 1:
            raise ValueError("CONTEXT_WINDOW_SIZE must be >= 1")
        if self.cap_chars < 200:
            raise ValueError("CONTEXT_CAP_CHARS must be >= 200")
        if self.context_mode not in CONTEXT_MODES:
            raise ValueError(f"CONTEXT_MODE must be one of: {', '.join(CONTEXT_MODES)}")
        if self.focus_turns < 0:
            raise ValueError("CONTEXT_FOCUS_TURNS must be >= 0 (0 disables recency markers)")


@dataclass(slots=True)
class Settings:
    discord_token: str
    discord_message_content_intent: bool
    discord_members_intent: bool

    llm_backend: str
    llm_temperature: float
    llm_max_output_tokens: int
    completion_timeout_seconds: int
    groq_api_key: str
    groq_base_url: str
    groq_model: str
    groq_search_model: str
    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    ollama_base_url: str
    ollama_model: str
    ollama_num_ctx: int
    classifier_model: str
    classifier_timeout_seconds: int

    memory_backend: str
    sqlite_path: Path
    memory_postgres_dsn: str
    context_scope: str
    context_retention_turns: int

    persona_json_path: Path
    bot_name: str
    tone_strategy: str
    default_tone: str
    context_window_size: int
    context_cap_chars: int
    context_mode: str
    context_focus_turns: int
    fallback_phrases: tuple[str, ...]
    escalation_enabled: bool
    escalation_model: str

    @classmethod
    def from_env(cls) -> "Settings":
        window = _env_int("CONTEXT_WINDOW_SIZE", 20, aliases=("MAX_RECENT_MESSAGES",))
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            discord_members_intent=_env_bool("DISCORD_MEMBERS_INTENT", True),
            llm_backend=_env_str("LLM_BACKEND", "groq").lower(),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.7),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", 0),
            completion_timeout_seconds=_env_int("COMPLETION_TIMEOUT_SECONDS", 60),
            groq_api_key=_env_str("GROQ_API_KEY", "", aliases=("QROQ_API_KEY",)),
            groq_base_url=_env_str("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
            groq_model=_env_str("GROQ_MODEL", "llama-3.3-70b-versatile"),
            groq_search_model=_env_str("GROQ_SEARCH_MODEL", "compound-beta"),
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            ollama_base_url=_env_str("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
            ollama_model=_env_str("OLLAMA_MODEL", "llama3.1:8b"),
            ollama_num_ctx=_env_int("OLLAMA_NUM_CTX", 0),
            classifier_model=_env_str("CLASSIFIER_MODEL", ""),
            classifier_timeout_seconds=_env_int("CLASSIFIER_TIMEOUT_SECONDS", 15),
            memory_backend=_env_str("MEMORY_BACKEND", "sqlite").lower(),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./context/contextDB.sqlite")).expanduser(),
            memory_postgres_dsn=_env_str("MEMORY_POSTGRES_DSN", ""),
            context_scope=_env_str("CONTEXT_SCOPE", "global").lower(),
            context_retention_turns=_env_int("CONTEXT_RETENTION_TURNS", window),
            persona_json_path=Path(_env_str("PERSONA_JSON_PATH", "./data/persona.json")).expanduser(),
            bot_name=_env_str("BOT_NAME", "Pip"),
            tone_strategy=_env_str("TONE_STRATEGY", "daily").lower(),
            default_tone=_env_str("DEFAULT_TONE", "calm and even"),
            context_window_size=window,
            context_cap_chars=_env_int("CONTEXT_CAP_CHARS", 4000),
            context_mode=_env_str("CONTEXT_MODE", "transcript").lower(),
            context_focus_turns=_env_int("CONTEXT_FOCUS_TURNS", 0),
            fallback_phrases=_env_phrases("FALLBACK_PHRASES", DEFAULT_FALLBACK_PHRASES),
            escalation_enabled=_env_bool("ESCALATION_ENABLED", False),
            escalation_model=_env_str("ESCALATION_MODEL", ""),
        )

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")

        if self.llm_backend not in LLM_BACKENDS:
            raise ValueError(f"LLM_BACKEND must be one of: {', '.join(LLM_BACKENDS)}")
        if self.llm_backend == "groq" and not self.groq_api_key:
            raise ValueError("GROQ_API_KEY is required when LLM_BACKEND=groq")
        if self.llm_backend == "gemini" and not self.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required when LLM_BACKEND=gemini")
        if self.completion_timeout_seconds < 5:
            raise ValueError("COMPLETION_TIMEOUT_SECONDS must be >= 5")
        if self.classifier_timeout_seconds < 1:
            raise ValueError("CLASSIFIER_TIMEOUT_SECONDS must be >= 1")
        if self.llm_max_output_tokens < 0:
            raise ValueError("LLM_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")

        if self.memory_backend not in {"sqlite", "postgres"}:
            raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")
        if self.memory_backend == "postgres" and not self.memory_postgres_dsn:
            raise ValueError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")
        if self.context_scope not in CONTEXT_SCOPES:
            raise ValueError(f"CONTEXT_SCOPE must be one of: {', '.join(CONTEXT_SCOPES)}")
        if self.context_retention_turns < self.context_window_size:
            raise ValueError("CONTEXT_RETENTION_TURNS must be >= CONTEXT_WINDOW_SIZE")

        self.persona().validate()

    def persona(self) -> PersonaConfig:
        base = PersonaConfig(
            bot_name=self.bot_name,
            tone_strategy=self.tone_strategy,
            default_tone=self.default_tone,
            context_window_size=self.context_window_size,
            cap_chars=self.context_cap_chars,
            context_mode=self.context_mode,
            focus_turns=self.context_focus_turns,
            fallback_phrases=self.fallback_phrases,
            escalation_enabled=self.escalation_enabled,
            escalation_model=self.escalation_model or None,
        )
        return load_persona(self.persona_json_path, base)


_PERSONA_KEYS = {
    "bot_name": str,
    "system_prompt_template": str,
    "tone_strategy": str,
    "default_tone": str,
    "context_window_size": int,
    "cap_chars": int,
    "context_mode": str,
    "focus_turns": int,
    "model": str,
    "escalation_enabled": bool,
    "escalation_model": str,
}


def _persona_defaults(base: PersonaConfig) -> dict[str, Any]:
    payload: dict[str, Any] = {key: getattr(base, key) for key in _PERSONA_KEYS}
    payload["fallback_phrases"] = list(base.fallback_phrases)
    return payload


def load_persona(path: Path, base: PersonaConfig) -> PersonaConfig:
    """Overlay a persona JSON file (if any) on top of ``base``.

    ``system_prompt_template`` may be a string or a list of lines.
    """
    merged = load_json_overrides(path, _persona_defaults(base))
    values: dict[str, Any] = {}
    for key, kind in _PERSONA_KEYS.items():
        raw = merged.get(key)
        if raw is None:
            values[key] = None if key in {"model", "escalation_model"} else getattr(base, key)
            continue
        if key == "system_prompt_template" and isinstance(raw, list):
            raw = "\n".join(str(line) for line in raw)
        if kind is bool:
            values[key] = raw if isinstance(raw, bool) else str(raw).strip().lower() in {"1", "true", "yes", "on"}
        elif kind is int:
            try:
                values[key] = int(raw)
            except (TypeError, ValueError):
                values[key] = getattr(base, key)
        else:
            values[key] = str(raw)

    for key in ("model", "escalation_model"):
        if values[key] is not None and not values[key].strip():
            values[key] = None
    values["tone_strategy"] = values["tone_strategy"].strip().lower()
    values["context_mode"] = values["context_mode"].strip().lower()

    raw_phrases = merged.get("fallback_phrases")
    if isinstance(raw_phrases, list):
        values["fallback_phrases"] = tuple(str(item).strip() for item in raw_phrases if str(item).strip())
    else:
        values["fallback_phrases"] = base.fallback_phrases
    return PersonaConfig(**values)
