from __future__ import annotations

from typing import TYPE_CHECKING

from .base import BaseChatClient
from .gemini_client import GeminiClient
from .groq_client import GroqClient
from .ollama_chat_client import OllamaChatClient

if TYPE_CHECKING:
    from ..config import Settings


def build_completion_client(settings: "Settings") -> BaseChatClient:
    backend = settings.llm_backend
    if backend == "groq":
        return GroqClient(
            api_key=settings.groq_api_key,
            model=settings.groq_model,
            timeout_seconds=settings.completion_timeout_seconds,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            base_url=settings.groq_base_url,
            search_model=settings.groq_search_model,
        )
    if backend == "gemini":
        return GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.completion_timeout_seconds,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            base_url=settings.gemini_base_url,
        )
    if backend == "ollama":
        return OllamaChatClient(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout_seconds=settings.completion_timeout_seconds,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            num_ctx=settings.ollama_num_ctx,
        )
    raise ValueError(f"Unsupported LLM backend: {backend}")
