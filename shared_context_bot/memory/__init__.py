from .factory import build_context_store
from .store import ContextStore

__all__ = ["ContextStore", "build_context_store"]
