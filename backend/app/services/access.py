"""Workspace and project membership checks for chat scopes."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Member, Project

logger = logging.getLogger(__name__)


def has_workspace_access(db: Session, user_id: str, workspace_id: str | None) -> bool:
    """Return ``True`` when the user is a member of the workspace.

    Lookup failures are reported as a denial instead of an error.
    """

    if not user_id or not workspace_id:
        return False
    try:
        stmt = select(Member.id).where(
            Member.user_id == user_id,
            Member.workspace_id == workspace_id,
        )
        return db.execute(stmt).first() is not None
    except SQLAlchemyError:
        logger.debug("Workspace access lookup failed for user %s", user_id, exc_info=True)
        return False


def resolve_project_workspace(db: Session, project_id: str | None) -> str | None:
    """Return the workspace owning the project, if the project exists."""

    if not project_id:
        return None
    try:
        return db.execute(
            select(Project.workspace_id).where(Project.id == project_id)
        ).scalar_one_or_none()
    except SQLAlchemyError:
        logger.debug("Project lookup failed for %s", project_id, exc_info=True)
        return None


def has_project_access(db: Session, user_id: str, project_id: str | None) -> bool:
    """Return ``True`` when the user belongs to the workspace owning the project."""

    workspace_id = resolve_project_workspace(db, project_id)
    if workspace_id is None:
        return False
    return has_workspace_access(db, user_id, workspace_id)
