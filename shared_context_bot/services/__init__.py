from .base import BaseChatClient
from .factory import build_completion_client
from .gemini_client import GeminiClient
from .groq_client import GroqClient
from .ollama_chat_client import OllamaChatClient

__all__ = [
    "BaseChatClient",
    "GeminiClient",
    "GroqClient",
    "OllamaChatClient",
    "build_completion_client",
]
