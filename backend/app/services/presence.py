"""Persisted presence fields for chat users."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models import User


def persist_presence(db: Session, user_id: str, *, online: bool) -> bool:
    """Store ``is_online`` and bump ``last_seen``; returns ``False`` for unknown users."""

    user = db.get(User, user_id)
    if user is None:
        return False
    user.is_online = online
    user.last_seen = datetime.now(timezone.utc)
    db.commit()
    return True
