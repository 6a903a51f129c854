from __future__ import annotations

import logging
import re
from typing import Any

from .base import BaseChatClient

logger = logging.getLogger("shared_context_bot.llm")

_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>\s*", re.IGNORECASE | re.DOTALL)


class OllamaChatClient(BaseChatClient):
    """Local ``/api/chat`` backend. There is no search tool, so ``web_search`` is ignored."""

    backend_name = "ollama"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_seconds: int = 45,
        temperature: float = 0.6,
        max_output_tokens: int = 0,
        num_ctx: int = 0,
    ) -> None:
        super().__init__(
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        self.chat_url = (base_url or "http://127.0.0.1:11434").strip().rstrip("/") + "/api/chat"
        self.num_ctx = max(0, int(num_ctx or 0))

    def _options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"temperature": self.temperature}
        if self.max_output_tokens is not None:
            options["num_predict"] = self.max_output_tokens
        if self.num_ctx:
            options["num_ctx"] = self.num_ctx
        return options

    @staticmethod
    def _reply_text(data: dict[str, Any]) -> str:
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            # /api/generate style payloads
            content = data.get("response")
        if not isinstance(content, str):
            return ""
        return _THINK_BLOCK_RE.sub("", content).strip()

    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        *,
        web_search: bool = False,
    ) -> str:
        history = self._sanitize_messages(messages)
        if not history:
            return ""
        if web_search:
            logger.debug("[llm.ollama] no search tool locally, answering from the model alone")

        data = await self._request(
            self.chat_url,
            {
                "model": (model or "").strip() or self.model,
                "messages": history,
                "stream": False,
                "think": False,
                "options": self._options(),
            },
        )
        return self._reply_text(data)
