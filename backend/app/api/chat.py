"""HTTP endpoints for chat history, search and sending."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from huddle.realtime import get_room_manager

from app.api.deps import get_current_user
from app.config import get_settings
from app.database import SessionFactory, get_db, get_session_factory
from app.models import ChatType, User
from app.monitoring.metrics import chat_messages_total
from app.schemas.messages import (
    DirectConversationRead,
    MarkReadRequest,
    MemberRead,
    MessageCreate,
    MessagePage,
    MessageRead,
    WorkspaceStats,
)
from app.services.access import has_project_access, has_workspace_access, resolve_project_workspace
from app.services.chat_events import scope_room
from app.services.errors import ChatAccessError
from app.services.message_store import (
    MessageScope,
    NewMessage,
    create_message,
    get_workspace_stats,
    list_direct_conversations,
    list_messages,
    list_online_users,
    list_workspace_members,
    mark_read,
    search_messages,
)

router = APIRouter(prefix="/chat", tags=["chat"])

settings = get_settings()

logger = logging.getLogger(__name__)


def _require_workspace_access(db: Session, user: User, workspace_id: str) -> None:
    if not has_workspace_access(db, user.id, workspace_id):
        raise ChatAccessError("Access denied to workspace")


def _require_project_access(db: Session, user: User, project_id: str) -> None:
    if not has_project_access(db, user.id, project_id):
        raise ChatAccessError("Access denied to project")


async def _publish_new_message(message: MessageRead) -> None:
    chat_messages_total.labels(message.chat_type.value).inc()
    await get_room_manager().broadcast(
        scope_room(message), "message:new", {"message": message.model_dump(mode="json")}
    )


# ---------------------------------------------------------------------------
# Workspace chat
# ---------------------------------------------------------------------------


@router.get("/workspace/{workspace_id}/messages", response_model=MessagePage)
def get_workspace_messages(
    workspace_id: str,
    limit: int = Query(default=settings.chat_history_default_limit, ge=1),
    skip: int = Query(default=0, ge=0),
    before: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessagePage:
    """Return workspace chat history, oldest message first."""

    _require_workspace_access(db, current_user, workspace_id)
    return list_messages(db, MessageScope.workspace(workspace_id), limit=limit, skip=skip, before=before)


@router.post(
    "/workspace/{workspace_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_workspace_message(
    workspace_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Store a workspace message and announce it to the workspace room."""

    await run_in_threadpool(_require_workspace_access, db, current_user, workspace_id)
    message = await run_in_threadpool(
        create_message,
        db,
        NewMessage(
            content=payload.content,
            sender_id=current_user.id,
            chat_type=ChatType.WORKSPACE,
            workspace_id=workspace_id,
            message_type=payload.message_type,
            reply_to=payload.reply_to,
        ),
    )
    await _publish_new_message(message)
    return message


@router.get("/workspace/{workspace_id}/online-users", response_model=list[MemberRead])
def get_online_users(
    workspace_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MemberRead]:
    """Return workspace members currently marked online."""

    _require_workspace_access(db, current_user, workspace_id)
    return list_online_users(db, workspace_id)


@router.get("/workspace/{workspace_id}/members", response_model=list[MemberRead])
def get_workspace_members(
    workspace_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MemberRead]:
    """Return all workspace members with presence fields."""

    _require_workspace_access(db, current_user, workspace_id)
    return list_workspace_members(db, workspace_id)


@router.get("/workspace/{workspace_id}/search", response_model=list[MessageRead])
def search_workspace_messages(
    workspace_id: str,
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(default=settings.chat_search_default_limit, ge=1, le=settings.chat_search_max_limit),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MessageRead]:
    """Case-insensitive search within workspace chat."""

    _require_workspace_access(db, current_user, workspace_id)
    return search_messages(db, MessageScope.workspace(workspace_id), q, limit=limit)


@router.get("/workspace/{workspace_id}/stats", response_model=WorkspaceStats)
async def get_workspace_chat_stats(
    workspace_id: str,
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    current_user: User = Depends(get_current_user),
) -> WorkspaceStats:
    """Return total, today and active-sender counts for workspace chat."""

    await run_in_threadpool(_require_workspace_access, db, current_user, workspace_id)
    return await get_workspace_stats(session_factory, workspace_id)


# ---------------------------------------------------------------------------
# Project chat
# ---------------------------------------------------------------------------


@router.get("/project/{project_id}/messages", response_model=MessagePage)
def get_project_messages(
    project_id: str,
    limit: int = Query(default=settings.chat_history_default_limit, ge=1),
    skip: int = Query(default=0, ge=0),
    before: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessagePage:
    """Return project chat history, oldest message first."""

    _require_project_access(db, current_user, project_id)
    return list_messages(db, MessageScope.project(project_id), limit=limit, skip=skip, before=before)


@router.post(
    "/project/{project_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_project_message(
    project_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Store a project message and announce it to the project room."""

    await run_in_threadpool(_require_project_access, db, current_user, project_id)
    workspace_id = await run_in_threadpool(resolve_project_workspace, db, project_id)
    message = await run_in_threadpool(
        create_message,
        db,
        NewMessage(
            content=payload.content,
            sender_id=current_user.id,
            chat_type=ChatType.PROJECT,
            workspace_id=workspace_id,
            project_id=project_id,
            message_type=payload.message_type,
            reply_to=payload.reply_to,
        ),
    )
    await _publish_new_message(message)
    return message


@router.get("/project/{project_id}/search", response_model=list[MessageRead])
def search_project_messages(
    project_id: str,
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(default=settings.chat_search_default_limit, ge=1, le=settings.chat_search_max_limit),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MessageRead]:
    """Case-insensitive search within project chat."""

    _require_project_access(db, current_user, project_id)
    return search_messages(db, MessageScope.project(project_id), q, limit=limit)


# ---------------------------------------------------------------------------
# Direct chat
# ---------------------------------------------------------------------------


@router.get("/direct/conversations", response_model=list[DirectConversationRead])
def get_direct_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[DirectConversationRead]:
    """Return the caller's direct conversations, most recent first."""

    return list_direct_conversations(db, current_user.id)


@router.get("/direct/{other_user_id}/messages", response_model=MessagePage)
def get_direct_messages(
    other_user_id: str,
    limit: int = Query(default=settings.chat_history_default_limit, ge=1),
    skip: int = Query(default=0, ge=0),
    before: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessagePage:
    """Return direct chat history with another user, oldest message first."""

    scope = MessageScope.direct(current_user.id, other_user_id)
    return list_messages(db, scope, limit=limit, skip=skip, before=before)


@router.post(
    "/direct/{other_user_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_direct_message(
    other_user_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Store a direct message and announce it to the pair's room."""

    message = await run_in_threadpool(
        create_message,
        db,
        NewMessage(
            content=payload.content,
            sender_id=current_user.id,
            chat_type=ChatType.DIRECT,
            participants=[current_user.id, other_user_id],
            message_type=payload.message_type,
            reply_to=payload.reply_to,
        ),
    )
    await _publish_new_message(message)
    return message


@router.post("/messages/mark-read")
def mark_messages_read(
    payload: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, object]:
    """Record read activity for the caller."""

    mark_read(db, current_user.id, payload.last_message_id)
    return {"status": True, "message": "Messages marked as read successfully!"}
