"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from app.config import get_settings
from app.core.security import decode_access_token
from app.database import get_db
from app.models import User

settings = get_settings()


def resolve_token(connection: HTTPConnection) -> str | None:
    """Return the access token carried by a request or websocket handshake.

    Checked in order: ``Authorization: Bearer`` header, ``token`` query
    parameter, then the session cookie set at login.
    """

    auth_header = connection.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.removeprefix("Bearer ").strip()
        if token:
            return token
    token = connection.query_params.get("token")
    if token:
        return token
    return connection.cookies.get(settings.session_cookie_name) or None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    token = resolve_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return get_user_from_token(token, db)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve a user from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.get(User, str(sub))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user
