from .identity import MemoryIdentityMixin
from .mood import MemoryMoodMixin
from .schema import MemorySchemaMixin
from .turns import MemoryTurnsMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryTurnsMixin",
    "MemoryMoodMixin",
    "MemoryIdentityMixin",
]
