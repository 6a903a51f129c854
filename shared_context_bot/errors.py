from __future__ import annotations

import re
from typing import Mapping


class BotError(Exception):
    """Base class for every per-message failure the pipeline knows how to handle."""


class StoreError(BotError):
    def __init__(self, operation: str, message: str = "") -> None:
        self.operation = operation
        super().__init__(f"Context store {operation} failed: {message}" if message else f"Context store {operation} failed")


class ClassificationError(BotError):
    pass


class ResolutionError(BotError):
    pass


class CompletionError(BotError):
    def __init__(self, message: str, *, status: int | None = None, retry_after: float | None = None) -> None:
        self.status = status
        self.retry_after = retry_after
        super().__init__(message)


class RateLimited(CompletionError):
    pass


class QuotaExceeded(CompletionError):
    pass


class Transient(CompletionError):
    pass


class Malformed(CompletionError):
    pass


_QUOTA_MARKERS = (
    "insufficient_quota",
    "tokens per day",
    "requests per day",
    "perday",
)

_BODY_RETRY_PATTERNS = (
    re.compile(r"retry after (\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
    re.compile(r"\"retryDelay\"\s*:\s*\"(\d+(?:\.\d+)?)s\"", re.IGNORECASE),
)
# Groq style: "try again in 7s", "try again in 1m23.5s", "try again in 450ms"
_TRY_AGAIN_RE = re.compile(r"try again in (?:(\d+)m(?!s))?(\d+(?:\.\d+)?)(ms|s)\b", re.IGNORECASE)


def parse_retry_after(headers: Mapping[str, str] | None, body: str = "") -> float | None:
    if headers:
        for key, value in headers.items():
            if key.lower() != "retry-after":
                continue
            try:
                seconds = float(str(value).strip())
            except ValueError:
                break
            return max(0.0, seconds)
    match = _TRY_AGAIN_RE.search(body or "")
    if match:
        minutes, amount, unit = match.groups()
        seconds = float(amount) / 1000 if unit.lower() == "ms" else float(amount)
        return max(0.0, seconds + 60 * int(minutes or 0))
    for pattern in _BODY_RETRY_PATTERNS:
        match = pattern.search(body or "")
        if match:
            return max(0.0, float(match.group(1)))
    return None


def classify_http_error(
    provider: str,
    status: int,
    body: str,
    headers: Mapping[str, str] | None = None,
) -> CompletionError:
    lowered = (body or "").casefold()
    summary = f"{provider} error {status}: {(body or '').strip()[:300]}"
    if status == 402 or any(marker in lowered for marker in _QUOTA_MARKERS):
        return QuotaExceeded(summary, status=status)
    if status in {429, 503}:
        return RateLimited(summary, status=status, retry_after=parse_retry_after(headers, body))
    return Transient(summary, status=status)
