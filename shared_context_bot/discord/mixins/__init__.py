from .identity_mixin import IdentityMixin
from .message_mixin import MessageMixin

__all__ = [
    "IdentityMixin",
    "MessageMixin",
]
