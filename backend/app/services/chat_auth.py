"""Authentication of websocket chat connections before they are accepted."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from app.api.deps import resolve_token
from app.core.security import decode_access_token
from app.models import User

logger = logging.getLogger(__name__)

AUTH_REQUIRED = "Authentication required"
USER_NOT_FOUND = "User not found"
AUTH_FAILED = "Authentication failed"


class ConnectionRejected(Exception):
    """Raised when a handshake must be refused; ``reason`` is sent with the close frame."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(slots=True)
class ConnectionContext:
    """Identity attached to an accepted chat connection."""

    user_id: str
    workspace_id: str | None = None
    user: dict[str, Any] = field(default_factory=dict)


def _user_snapshot(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "profile_picture": user.profile_picture,
    }


def authenticate_connection(connection: HTTPConnection, db: Session) -> ConnectionContext:
    """Resolve the connecting user with the same token rules as the HTTP API.

    Raises :class:`ConnectionRejected` with the reason to close the socket with.
    """

    try:
        token = resolve_token(connection)
        if not token:
            raise ConnectionRejected(AUTH_REQUIRED)

        try:
            payload = decode_access_token(token)
        except HTTPException:
            raise ConnectionRejected(AUTH_REQUIRED) from None

        subject = payload.get("sub")
        if not subject:
            raise ConnectionRejected(AUTH_REQUIRED)

        user = db.get(User, str(subject))
        if user is None:
            raise ConnectionRejected(USER_NOT_FOUND)

        return ConnectionContext(
            user_id=user.id,
            workspace_id=user.current_workspace_id,
            user=_user_snapshot(user),
        )
    except ConnectionRejected:
        raise
    except Exception:
        logger.exception("Unexpected error while authenticating chat connection")
        raise ConnectionRejected(AUTH_FAILED) from None
