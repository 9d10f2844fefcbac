"""Application service helpers."""

from .errors import ChatAccessError, ChatError, ChatNotFoundError, ChatValidationError

__all__ = [
    "ChatError",
    "ChatValidationError",
    "ChatAccessError",
    "ChatNotFoundError",
]
