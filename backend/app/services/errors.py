"""Domain errors raised by chat services."""

from __future__ import annotations

from fastapi import status


class ChatError(Exception):
    """Base class for recoverable chat failures surfaced to the caller."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ChatValidationError(ChatError):
    """Raised when a payload or scope is inconsistent."""

    status_code = status.HTTP_400_BAD_REQUEST


class ChatAccessError(ChatError):
    """Raised when the caller is not a member of the target scope."""

    status_code = status.HTTP_403_FORBIDDEN


class ChatNotFoundError(ChatError):
    """Raised when a message or scope cannot be found for the caller."""

    status_code = status.HTTP_404_NOT_FOUND
