from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Protocol, Sequence

from ..config import PersonaConfig
from ..context.codec import decode_from_model, encode_for_model, platform_mention
from ..context.formatter import TIMESTAMP_FORMAT, render, render_turn_list
from ..context.identity import IdentityDirectory
from ..context.models import MoodState, Turn, scope_key_for, utc_now
from ..context.mood import ToneSelection, ToneStrategy
from ..errors import CompletionError, QuotaExceeded, RateLimited, StoreError, Transient
from ..prompts.dialogue import (
    build_escalation_persona_line,
    build_rate_limited_reply,
    build_referenced_message_line,
    empty_context_placeholder,
    empty_response_reply,
    escalation_search_system_prompt,
    generic_failure_reply,
    quota_exceeded_reply,
    turn_list_context_note,
)

logger = logging.getLogger("shared_context_bot.dialogue")

SendReply = Callable[[str], Awaitable[None]]


class TurnState(str, Enum):
    IDLE = "idle"
    CONTEXT_FETCHED = "context_fetched"
    TONE_SELECTED = "tone_selected"
    PROMPT_BUILT = "prompt_built"
    MODEL_CALLED = "model_called"
    REPLIED = "replied"
    ESCALATED = "escalated"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass(slots=True)
class InboundMessage:
    sender_id: str
    text: str
    mentions_bot: bool
    is_broadcast_mention: bool = False
    referenced_message_id: str | None = None
    referenced_text: str | None = None
    channel_id: str | None = None
    sender_name: str | None = None


@dataclass(slots=True)
class TurnOutcome:
    state: TurnState
    trace: list[TurnState] = field(default_factory=list)
    reply_text: str | None = None
    turn: Turn | None = None


class _ChatBackend(Protocol):
    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        *,
        web_search: bool = False,
    ) -> str: ...


class _TurnStore(Protocol):
    async def append(self, turn: Turn) -> int: ...

    async def recent_turns(self, scope_key: str, limit: int) -> list[Turn]: ...

    async def prune(self, scope_key: str, keep: int) -> int: ...

    async def get_mood_state(self) -> MoodState: ...

    async def save_mood_state(self, state: MoodState) -> None: ...


class _PromptFields(dict):
    # Unknown placeholders in a custom persona template are left as written.
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def normalize_phrase(text: str) -> str:
    return (text or "").strip().casefold().rstrip(" \t\r\n.!?,;:…").strip()


class ResponseOrchestrator:
    """Runs one inbound message through context, tone, prompt, completion and reply.

    The reply is always sent before the turn is persisted, and a failed turn is
    never persisted. Only a context read failure ends the turn without a reply.
    """

    def __init__(
        self,
        *,
        store: _TurnStore,
        llm: _ChatBackend,
        persona: PersonaConfig,
        tone_strategy: ToneStrategy,
        identities: IdentityDirectory | None = None,
        context_scope: str = "global",
        retention_turns: int | None = None,
        completion_timeout_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.llm = llm
        self.persona = persona
        self.tone_strategy = tone_strategy
        self.identities = identities if identities is not None else IdentityDirectory()
        self.context_scope = context_scope
        self.retention_turns = max(persona.context_window_size, int(retention_turns or 0))
        self.completion_timeout_seconds = float(completion_timeout_seconds)
        self._clock = clock
        self._fallback_phrases = {normalize_phrase(p) for p in persona.fallback_phrases if normalize_phrase(p)}
        self._mood_lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()

    async def handle(self, message: InboundMessage, send_reply: SendReply) -> TurnOutcome:
        trace = [TurnState.IDLE]
        user_text = (message.text or "").strip()
        if not message.mentions_bot or message.is_broadcast_mention or not user_text:
            trace.append(TurnState.IGNORED)
            return TurnOutcome(state=TurnState.IGNORED, trace=trace)

        if message.sender_name:
            self.identities.remember(message.sender_id, message.sender_name)

        scope_key = scope_key_for(self.context_scope, channel_id=message.channel_id, sender_id=message.sender_id)
        logger.info(
            "[msg.user] scope=%s sender=%s chars=%s",
            scope_key,
            message.sender_id,
            len(user_text),
        )

        try:
            recent = await self.store.recent_turns(scope_key, self.persona.context_window_size)
        except StoreError as exc:
            logger.error("[msg.user] context read failed, dropping message: %s", exc)
            trace.append(TurnState.FAILED)
            return TurnOutcome(state=TurnState.FAILED, trace=trace)
        self._schedule_prune(scope_key)
        trace.append(TurnState.CONTEXT_FETCHED)

        now = self._clock()
        encoded_text = self._encode(user_text)
        selection = await self._select_tone(encoded_text, now)
        trace.append(TurnState.TONE_SELECTED)

        messages = self._build_messages(message, encoded_text, recent, selection.tone, now)
        trace.append(TurnState.PROMPT_BUILT)

        try:
            raw = await self._complete(messages, model=self.persona.model)
            trace.append(TurnState.MODEL_CALLED)
            final_state = TurnState.REPLIED
            if self._needs_escalation(raw):
                trace.append(TurnState.ESCALATED)
                final_state = TurnState.ESCALATED
                raw = await self._escalate(messages, encoded_text, raw)
        except CompletionError as exc:
            return await self._fail(exc, trace, send_reply)

        reply_text = decode_from_model(raw.strip(), self.identities.user_id_for)
        await send_reply(reply_text)
        if final_state is TurnState.REPLIED:
            trace.append(TurnState.REPLIED)
        logger.info("[msg.bot] scope=%s state=%s chars=%s", scope_key, final_state.value, len(reply_text))

        turn = Turn(
            scope_key=scope_key,
            sender_id=message.sender_id,
            user_text=user_text,
            bot_text=reply_text,
            timestamp=self._clock(),
        )
        try:
            turn_id = await self.store.append(turn)
        except StoreError as exc:
            logger.error("[msg.bot] reply sent but turn was not saved: %s", exc)
            return TurnOutcome(state=final_state, trace=trace, reply_text=reply_text)
        return TurnOutcome(
            state=final_state,
            trace=trace,
            reply_text=reply_text,
            turn=dataclasses.replace(turn, id=turn_id),
        )

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _encode(self, text: str) -> str:
        return encode_for_model(text, self.identities.display_name)

    def _speaker_tag(self, sender_id: str) -> str:
        return self._encode(platform_mention(sender_id))

    def _schedule_prune(self, scope_key: str) -> None:
        task = asyncio.create_task(self._prune(scope_key), name=f"context-prune:{scope_key}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _prune(self, scope_key: str) -> None:
        try:
            removed = await self.store.prune(scope_key, self.retention_turns)
        except StoreError as exc:
            logger.warning("[context.prune] scope=%s failed: %s", scope_key, exc)
            return
        if removed:
            logger.info("[context.prune] scope=%s removed=%s keep=%s", scope_key, removed, self.retention_turns)

    async def _select_tone(self, text: str, now: datetime) -> ToneSelection:
        strategy = self.tone_strategy
        if not strategy.stateful:
            return await strategy.select(text, now, None)

        async with self._mood_lock:
            try:
                mood = await self.store.get_mood_state()
            except StoreError as exc:
                logger.warning("[mood] mood read failed, using default tone: %s", exc)
                return ToneSelection(tone=self.persona.default_tone, fallback=True)
            selection = await strategy.select(text, now, mood)
            if selection.mood is not None:
                try:
                    await self.store.save_mood_state(selection.mood)
                except StoreError as exc:
                    logger.warning("[mood] mood was not saved: %s", exc)
            return selection

    def _encoded_turns(self, turns: Sequence[Turn]) -> list[Turn]:
        encoded: list[Turn] = []
        for turn in turns:
            encoded.append(
                dataclasses.replace(
                    turn,
                    user_text=self._encode(turn.user_text) if turn.user_text else turn.user_text,
                    bot_text=self._encode(turn.bot_text) if turn.bot_text else turn.bot_text,
                )
            )
        return encoded

    def _build_messages(
        self,
        message: InboundMessage,
        encoded_text: str,
        recent: Sequence[Turn],
        tone: str,
        now: datetime,
    ) -> list[dict[str, str]]:
        persona = self.persona
        turns = self._encoded_turns(recent)
        history: list[dict[str, str]] = []
        if persona.context_mode == "turns":
            history = render_turn_list(
                turns,
                persona.cap_chars,
                speaker_tag=self._speaker_tag,
                focus_turns=persona.focus_turns,
            )
            context = turn_list_context_note() if history else empty_context_placeholder()
        else:
            context = render(
                turns,
                persona.cap_chars,
                speaker_tag=self._speaker_tag,
                focus_turns=persona.focus_turns,
            )
            context = context or empty_context_placeholder()

        system_prompt = persona.system_prompt_template.format_map(
            _PromptFields(
                bot_name=persona.bot_name,
                tone=tone,
                context=context,
                user_tag=self._speaker_tag(message.sender_id),
                now=now.strftime(TIMESTAMP_FORMAT),
            )
        )
        referenced = build_referenced_message_line(self._encode(message.referenced_text or ""))
        if referenced:
            system_prompt = f"{system_prompt}\n{referenced}"

        return [
            {"role": "system", "content": system_prompt},
            *history,
            {"role": "user", "content": encoded_text},
        ]

    async def _complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        web_search: bool = False,
    ) -> str:
        try:
            return await asyncio.wait_for(
                self.llm.chat(messages, model=model, web_search=web_search),
                timeout=self.completion_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise Transient(f"completion timed out after {self.completion_timeout_seconds:.0f}s") from exc

    def _needs_escalation(self, text: str) -> bool:
        normalized = normalize_phrase(text)
        return not normalized or normalized in self._fallback_phrases

    async def _escalate(self, messages: list[dict[str, str]], encoded_text: str, original: str) -> str:
        if not self.persona.escalation_enabled:
            return original if original.strip() else empty_response_reply()

        logger.info("[msg.bot] escalating to web search")
        search_answer = await self._complete(
            [
                {"role": "system", "content": escalation_search_system_prompt()},
                {"role": "user", "content": encoded_text},
            ],
            model=self.persona.escalation_model,
            web_search=True,
        )
        if self._needs_escalation(search_answer):
            return empty_response_reply()

        rewritten = await self._complete(
            [*messages, {"role": "system", "content": build_escalation_persona_line(search_answer)}],
            model=self.persona.model,
        )
        return rewritten if rewritten.strip() else search_answer

    async def _fail(self, exc: CompletionError, trace: list[TurnState], send_reply: SendReply) -> TurnOutcome:
        if isinstance(exc, RateLimited):
            reply_text = build_rate_limited_reply(exc.retry_after)
        elif isinstance(exc, QuotaExceeded):
            reply_text = quota_exceeded_reply()
        else:
            reply_text = generic_failure_reply()
        logger.warning("[msg.bot] completion failed (%s): %s", type(exc).__name__, exc)
        trace.append(TurnState.FAILED)
        await send_reply(reply_text)
        return TurnOutcome(state=TurnState.FAILED, trace=trace, reply_text=reply_text)
