"""Password hashing and signed access tokens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext

from app.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def access_token_ttl() -> timedelta:
    return timedelta(minutes=settings.access_token_expire_minutes)


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """Sign a token whose ``sub`` claim is the user id."""

    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(subject),
        "iat": issued_at,
        "exp": issued_at + (expires_delta or access_token_ttl()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def decode_access_token(token: str) -> dict[str, Any]:
    """Return the claims of a valid token; expired or forged tokens raise HTTP 401."""

    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Could not validate credentials") from exc
