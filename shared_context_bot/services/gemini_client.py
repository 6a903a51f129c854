from __future__ import annotations

from typing import Any, Dict, List

from ..errors import Malformed
from .base import BaseChatClient


def _system_instruction(messages: List[Dict[str, str]]) -> Dict[str, Any] | None:
    lines = [m["content"] for m in messages if m["role"] == "system"]
    if not lines:
        return None
    return {"parts": [{"text": "\n\n".join(lines)}]}


def _contents(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    # Gemini only knows "user" and "model" turns.
    return [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [{"text": m["content"]}]}
        for m in messages
        if m["role"] != "system"
    ]


class GeminiClient(BaseChatClient):
    """generateContent backend. ``web_search`` turns on Google Search grounding."""

    backend_name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int = 0,
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        super().__init__(
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:generateContent?key={self.api_key}"

    def _build_payload(self, messages: List[Dict[str, str]], web_search: bool) -> Dict[str, Any]:
        mapped = self._sanitize_messages(messages)
        payload: Dict[str, Any] = {"contents": _contents(mapped)}
        instruction = _system_instruction(mapped)
        if instruction is not None:
            payload["systemInstruction"] = instruction

        generation_config: Dict[str, Any] = {"temperature": self.temperature}
        if self.max_output_tokens is not None:
            generation_config["maxOutputTokens"] = self.max_output_tokens
        payload["generationConfig"] = generation_config
        if web_search:
            payload["tools"] = [{"google_search": {}}]
        return payload

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates")
        if not candidates:
            feedback = data.get("promptFeedback")
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                raise Malformed(f"gemini blocked the prompt: {block_reason}", status=200)
            raise Malformed("gemini returned no candidates", status=200)
        if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
            raise Malformed("gemini candidate is not an object", status=200)

        content = candidates[0].get("content")
        parts = (content.get("parts") if isinstance(content, dict) else None) or []
        if not isinstance(parts, list):
            raise Malformed("gemini content parts are not a list", status=200)
        texts = [
            part["text"].strip()
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        return "\n".join(text for text in texts if text)

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str | None = None,
        *,
        web_search: bool = False,
    ) -> str:
        payload = self._build_payload(messages, web_search)
        data = await self._request(self._endpoint((model or "").strip() or self.model), payload)
        return self._extract_text(data)
