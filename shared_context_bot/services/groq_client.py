from __future__ import annotations

import logging
from typing import Any

from ..errors import Malformed
from .base import BaseChatClient

logger = logging.getLogger("shared_context_bot.llm")


class GroqClient(BaseChatClient):
    """OpenAI-compatible chat completions client (Groq by default).

    Web search on Groq is a property of the model, so ``web_search=True`` without an
    explicit model selects ``search_model``.
    """

    backend_name = "groq"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int = 0,
        base_url: str = "https://api.groq.com/openai/v1",
        search_model: str = "compound-beta",
    ) -> None:
        super().__init__(
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.search_model = search_model.strip()

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise Malformed("groq returned no choices", status=200)
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message")
        if not isinstance(message, dict):
            raise Malformed("groq choice has no message", status=200)
        content = message.get("content")
        if content is None:
            return ""
        if not isinstance(content, str):
            raise Malformed("groq message content is not text", status=200)
        return content.strip()

    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        *,
        web_search: bool = False,
    ) -> str:
        selected_model = (model or "").strip()
        if not selected_model:
            selected_model = self.search_model if web_search and self.search_model else self.model
        payload: dict[str, Any] = {
            "model": selected_model,
            "messages": self._sanitize_messages(messages),
            "temperature": self.temperature,
        }
        if self.max_output_tokens is not None:
            payload["max_tokens"] = self.max_output_tokens
        data = await self._request(self._endpoint(), payload)
        text = self._extract_text(data)
        logger.debug("[llm.groq] model=%s chars=%s", selected_model, len(text))
        return text
