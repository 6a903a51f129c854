from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from ..errors import CompletionError, Malformed, Transient, classify_http_error


class BaseChatClient:
    """Shared HTTP plumbing for completion backends.

    A request is attempted once. Rate-limit hints are surfaced through the raised
    :class:`CompletionError` instead of being retried here.
    """

    backend_name = "http"

    def __init__(self, *, model: str, timeout_seconds: int, temperature: float, max_output_tokens: int = 0) -> None:
        self.model = (model or "").strip()
        if not self.model:
            raise ValueError(f"{self.backend_name} model cannot be empty")
        self.timeout = aiohttp.ClientTimeout(total=max(5, int(timeout_seconds)))
        self.temperature = float(temperature)
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens or 0) > 0 else None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> dict[str, str]:
        return {}

    @staticmethod
    def _sanitize_messages(messages: list[dict[str, str]]) -> list[dict[str, str]]:
        mapped: list[dict[str, str]] = []
        for message in messages:
            role = str(message.get("role", "")).strip().lower() or "user"
            if role not in {"system", "user", "assistant"}:
                role = "user"
            content = str(message.get("content", "")).strip()
            if not content:
                continue
            mapped.append({"role": role, "content": content})
        return mapped

    async def _request(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        try:
            async with self._session.post(url, json=payload, headers=self._headers()) as response:
                text = await response.text()
                if response.status != 200:
                    raise classify_http_error(self.backend_name, response.status, text, response.headers)
        except asyncio.CancelledError:
            raise
        except CompletionError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise Transient(f"{self.backend_name} transport error: {exc!r}") from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise Malformed(f"{self.backend_name} returned invalid JSON", status=200) from exc
        if not isinstance(data, dict):
            raise Malformed(f"{self.backend_name} returned non-object JSON", status=200)
        return data

    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        *,
        web_search: bool = False,
    ) -> str:
        raise NotImplementedError
