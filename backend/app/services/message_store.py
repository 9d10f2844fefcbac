"""Persistence operations for chat messages shared by HTTP and websocket handlers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.database import SessionFactory, get_db_session
from app.models import ChatType, Member, Message, MessageReaction, MessageType, User
from app.schemas.messages import (
    ChatUserPresence,
    ChatUserRead,
    DirectConversationRead,
    MemberRead,
    MessagePage,
    MessageRead,
    ReactionRead,
    ReplyPreview,
    WorkspaceStats,
)
from app.services.access import has_workspace_access
from app.services.errors import ChatNotFoundError, ChatValidationError

logger = logging.getLogger(__name__)

settings = get_settings()

DELETED_MESSAGE_CONTENT = "This message was deleted"

_MESSAGE_LOAD_OPTIONS = (
    selectinload(Message.sender),
    selectinload(Message.reply_to).selectinload(Message.sender),
    selectinload(Message.reactions).selectinload(MessageReaction.user),
)


@dataclass(slots=True)
class NewMessage:
    """Input for :func:`create_message`."""

    content: str
    sender_id: str
    chat_type: ChatType
    workspace_id: str | None = None
    project_id: str | None = None
    participants: Sequence[str] | None = None
    message_type: MessageType = MessageType.TEXT
    reply_to: str | None = None


@dataclass(slots=True)
class MessageScope:
    """Chat type plus the identifiers selecting one conversation."""

    chat_type: ChatType
    workspace_id: str | None = None
    project_id: str | None = None
    participants: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def workspace(cls, workspace_id: str) -> "MessageScope":
        return cls(ChatType.WORKSPACE, workspace_id=workspace_id)

    @classmethod
    def project(cls, project_id: str) -> "MessageScope":
        return cls(ChatType.PROJECT, project_id=project_id)

    @classmethod
    def direct(cls, user_id: str, other_user_id: str) -> "MessageScope":
        return cls(ChatType.DIRECT, participants=tuple(sorted((user_id, other_user_id))))

    def criteria(self) -> list:
        """Return SQL criteria matching exactly the scoping fields of the chat type."""

        clauses = [Message.chat_type == self.chat_type]
        if self.chat_type is ChatType.WORKSPACE:
            if not self.workspace_id:
                raise ChatValidationError("Workspace ID is required")
            clauses.append(Message.workspace_id == self.workspace_id)
        elif self.chat_type is ChatType.PROJECT:
            if not self.project_id:
                raise ChatValidationError("Project ID is required")
            clauses.append(Message.project_id == self.project_id)
        else:
            if len(self.participants) != 2 or not all(self.participants):
                raise ChatValidationError("Exactly 2 participants are required")
            first, second = sorted(self.participants)
            clauses.append(Message.participant_a_id == first)
            clauses.append(Message.participant_b_id == second)
        return clauses


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_content(content: str | None) -> str:
    """Enforce the length bounds on the content as sent, then trim it."""

    raw = content or ""
    value = raw.strip()
    if not value:
        raise ChatValidationError("Message content is required")
    limit = settings.chat_message_max_length
    if len(raw) > limit:
        raise ChatValidationError(f"Message too long (max {limit} characters)")
    return value


def _clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if not limit or limit < 1:
        return default
    return min(limit, maximum)


def serialize_user(user: User) -> ChatUserRead:
    return ChatUserRead(id=user.id, name=user.name, profile_picture=user.profile_picture)


def serialize_presence(user: User) -> ChatUserPresence:
    return ChatUserPresence(
        id=user.id,
        name=user.name,
        profile_picture=user.profile_picture,
        is_online=user.is_online,
        last_seen=user.last_seen,
    )


def _serialize_reactions(message: Message) -> list[ReactionRead]:
    return [
        ReactionRead(user=serialize_user(reaction.user), emoji=reaction.emoji, created_at=reaction.created_at)
        for reaction in message.reactions
    ]


def serialize_message(message: Message) -> MessageRead:
    reply_preview: ReplyPreview | None = None
    if message.reply_to is not None:
        reply = message.reply_to
        reply_preview = ReplyPreview(
            id=reply.id,
            content=reply.content,
            sender=serialize_user(reply.sender) if reply.sender is not None else None,
            is_deleted=reply.is_deleted,
        )

    return MessageRead(
        id=message.id,
        content=message.content,
        sender=serialize_user(message.sender),
        chat_type=message.chat_type,
        workspace_id=message.workspace_id,
        project_id=message.project_id,
        participants=message.participants,
        message_type=message.message_type,
        reply_to=reply_preview,
        reactions=_serialize_reactions(message),
        is_edited=message.is_edited,
        edited_at=message.edited_at,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def _load_message(db: Session, message_id: str) -> Message | None:
    stmt = select(Message).where(Message.id == message_id).options(*_MESSAGE_LOAD_OPTIONS)
    return db.execute(stmt).scalar_one_or_none()


def get_message(db: Session, message_id: str) -> MessageRead:
    """Return a single enriched message, including soft-deleted ones."""

    message = _load_message(db, message_id)
    if message is None:
        raise ChatNotFoundError("Message not found")
    return serialize_message(message)


def create_message(db: Session, data: NewMessage) -> MessageRead:
    """Persist a new message after checking its scoping fields."""

    content = normalize_content(data.content)
    try:
        chat_type = ChatType(data.chat_type)
    except ValueError:
        raise ChatValidationError("Valid chat type is required") from None

    workspace_id: str | None = None
    project_id: str | None = None
    participant_a_id: str | None = None
    participant_b_id: str | None = None

    if chat_type is ChatType.WORKSPACE:
        if not data.workspace_id:
            raise ChatValidationError("Workspace ID is required for workspace chat")
        workspace_id = data.workspace_id
    elif chat_type is ChatType.PROJECT:
        if not data.project_id or not data.workspace_id:
            raise ChatValidationError("Project and Workspace IDs are required for project chat")
        workspace_id = data.workspace_id
        project_id = data.project_id
    else:
        participants = list(data.participants or ())
        if len(participants) != 2 or not all(participants):
            raise ChatValidationError("Exactly 2 participants are required for direct messages")
        participant_a_id, participant_b_id = sorted(participants)

    if data.reply_to and db.get(Message, data.reply_to) is None:
        raise ChatValidationError("Replied message not found")

    message = Message(
        content=content,
        sender_id=data.sender_id,
        chat_type=chat_type,
        workspace_id=workspace_id,
        project_id=project_id,
        participant_a_id=participant_a_id,
        participant_b_id=participant_b_id,
        message_type=MessageType(data.message_type or MessageType.TEXT),
        reply_to_id=data.reply_to or None,
        is_edited=False,
        is_deleted=False,
    )
    db.add(message)
    db.commit()

    logger.debug("Stored %s message %s from %s", chat_type.value, message.id, data.sender_id)
    return get_message(db, message.id)


def list_messages(
    db: Session,
    scope: MessageScope,
    *,
    limit: int | None = None,
    skip: int = 0,
    before: str | None = None,
) -> MessagePage:
    """Return a page of non-deleted messages in the scope, oldest first."""

    effective_limit = _clamp_limit(
        limit, settings.chat_history_default_limit, settings.chat_history_max_limit
    )
    offset = max(skip or 0, 0)

    criteria = [*scope.criteria(), Message.is_deleted.is_(False)]
    if before:
        anchor = db.execute(
            select(Message.created_at).where(Message.id == before)
        ).scalar_one_or_none()
        if anchor is not None:
            criteria.append(Message.created_at < anchor)

    stmt = (
        select(Message)
        .where(*criteria)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset(offset)
        .limit(effective_limit)
        .options(*_MESSAGE_LOAD_OPTIONS)
    )
    rows = list(db.execute(stmt).scalars())
    rows.reverse()

    total = db.execute(select(func.count(Message.id)).where(*criteria)).scalar_one()
    return MessagePage(
        messages=[serialize_message(message) for message in rows],
        has_more=offset + len(rows) < total,
        total=total,
    )


def search_messages(
    db: Session,
    scope: MessageScope,
    term: str | None,
    *,
    limit: int | None = None,
) -> list[MessageRead]:
    """Case-insensitive substring search within one scope, newest first."""

    needle = (term or "").strip()
    if not needle:
        return []

    effective_limit = _clamp_limit(
        limit, settings.chat_search_default_limit, settings.chat_search_max_limit
    )
    stmt = (
        select(Message)
        .where(
            *scope.criteria(),
            Message.is_deleted.is_(False),
            func.lower(Message.content).contains(needle.lower(), autoescape=True),
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(effective_limit)
        .options(*_MESSAGE_LOAD_OPTIONS)
    )
    return [serialize_message(message) for message in db.execute(stmt).scalars()]


def _find_own_message(
    db: Session, message_id: str, user_id: str, workspace_id: str | None
) -> Message | None:
    criteria = [
        Message.id == message_id,
        Message.sender_id == user_id,
        Message.is_deleted.is_(False),
    ]
    if workspace_id:
        criteria.append(or_(Message.workspace_id.is_(None), Message.workspace_id == workspace_id))
    return db.execute(select(Message).where(*criteria)).scalar_one_or_none()


def edit_message(
    db: Session,
    message_id: str,
    user_id: str,
    content: str,
    *,
    workspace_id: str | None = None,
) -> MessageRead:
    """Replace the content of the caller's own message.

    A missing message and a message owned by someone else are reported the
    same way so callers cannot tell foreign message ids apart from missing ones.
    """

    new_content = normalize_content(content)
    message = _find_own_message(db, message_id, user_id, workspace_id)
    if message is None:
        raise ChatNotFoundError("Message not found or cannot be edited")

    message.content = new_content
    message.is_edited = True
    message.edited_at = _utcnow()
    db.commit()
    return get_message(db, message.id)


def soft_delete_message(
    db: Session,
    message_id: str,
    user_id: str,
    *,
    workspace_id: str | None = None,
) -> MessageRead:
    """Tombstone the caller's own message; the row stays for reply previews."""

    message = _find_own_message(db, message_id, user_id, workspace_id)
    if message is None:
        raise ChatNotFoundError("Message not found or cannot be deleted")

    message.is_deleted = True
    message.deleted_at = _utcnow()
    message.content = DELETED_MESSAGE_CONTENT
    db.commit()
    return get_message(db, message.id)


def _is_room_member(db: Session, message: Message, user_id: str) -> bool:
    if message.chat_type is ChatType.DIRECT:
        return user_id in message.participants
    return has_workspace_access(db, user_id, message.workspace_id)


def toggle_reaction(
    db: Session,
    message_id: str,
    user_id: str,
    emoji: str,
    *,
    workspace_id: str | None = None,
) -> tuple[MessageRead, list[ReactionRead]]:
    """Add the (user, emoji) reaction or remove it when already present.

    Only members of the message's room may react: workspace and project
    messages need workspace membership, direct messages need the caller to
    be one of the two participants. Anything else reads as a missing message.
    """

    value = (emoji or "").strip()
    if not value or len(value) > settings.chat_reaction_max_length:
        raise ChatValidationError("Valid emoji is required")

    criteria = [Message.id == message_id, Message.is_deleted.is_(False)]
    if workspace_id:
        criteria.append(or_(Message.workspace_id.is_(None), Message.workspace_id == workspace_id))
    message = db.execute(
        select(Message).where(*criteria).options(selectinload(Message.reactions))
    ).scalar_one_or_none()
    if message is None or not _is_room_member(db, message, user_id):
        raise ChatNotFoundError("Message not found")

    existing = next(
        (reaction for reaction in message.reactions if reaction.user_id == user_id and reaction.emoji == value),
        None,
    )
    if existing is not None:
        message.reactions.remove(existing)
    else:
        message.reactions.append(MessageReaction(user_id=user_id, emoji=value))
    db.commit()

    refreshed = get_message(db, message.id)
    return refreshed, refreshed.reactions


def mark_read(db: Session, user_id: str, last_message_id: str | None = None) -> None:
    """Record read activity; only ``last_seen`` is tracked, there is no read cursor."""

    user = db.get(User, user_id)
    if user is None:
        raise ChatNotFoundError("User not found")
    user.last_seen = _utcnow()
    db.commit()


def _start_of_local_day(now: datetime) -> datetime:
    local_now = now.astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


async def get_workspace_stats(
    session_factory: SessionFactory,
    workspace_id: str,
    *,
    now: datetime | None = None,
) -> WorkspaceStats:
    """Compute workspace chat totals with the three aggregates running concurrently."""

    current = now or _utcnow()
    today = _start_of_local_day(current)
    active_since = current.astimezone(timezone.utc) - timedelta(days=settings.chat_stats_active_days)
    scope = (
        Message.workspace_id == workspace_id,
        Message.chat_type == ChatType.WORKSPACE,
        Message.is_deleted.is_(False),
    )

    def _count(stmt) -> int:
        with get_db_session(session_factory) as db:
            return int(db.execute(stmt).scalar_one() or 0)

    total, today_count, active_users = await asyncio.gather(
        asyncio.to_thread(_count, select(func.count(Message.id)).where(*scope)),
        asyncio.to_thread(
            _count, select(func.count(Message.id)).where(*scope, Message.created_at >= today)
        ),
        asyncio.to_thread(
            _count,
            select(func.count(distinct(Message.sender_id))).where(
                *scope, Message.created_at >= active_since
            ),
        ),
    )
    return WorkspaceStats(total_messages=total, today_messages=today_count, active_users=active_users)


def list_direct_conversations(db: Session, user_id: str) -> list[DirectConversationRead]:
    """Group the caller's direct messages by participant pair, newest conversation first.

    ``unread_count`` counts every message in the pair not sent by the caller.
    """

    stmt = (
        select(Message)
        .where(
            Message.chat_type == ChatType.DIRECT,
            Message.is_deleted.is_(False),
            or_(Message.participant_a_id == user_id, Message.participant_b_id == user_id),
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .options(*_MESSAGE_LOAD_OPTIONS)
    )

    latest: dict[tuple[str, str], Message] = {}
    unread: dict[tuple[str, str], int] = {}
    for message in db.execute(stmt).scalars():
        pair = (message.participant_a_id, message.participant_b_id)
        latest.setdefault(pair, message)
        if message.sender_id != user_id:
            unread[pair] = unread.get(pair, 0) + 1

    other_ids = {b if a == user_id else a for a, b in latest}
    others: dict[str, User] = {}
    if other_ids:
        others = {
            user.id: user
            for user in db.execute(select(User).where(User.id.in_(other_ids))).scalars()
        }

    conversations: list[DirectConversationRead] = []
    for (first, second), message in latest.items():
        other_id = second if first == user_id else first
        other = others.get(other_id)
        conversations.append(
            DirectConversationRead(
                participants=[first, second],
                other_user=serialize_presence(other) if other is not None else None,
                last_message=serialize_message(message),
                unread_count=unread.get((first, second), 0),
            )
        )
    return conversations


def _serialize_member(member: Member) -> MemberRead:
    user = member.user
    return MemberRead(
        id=user.id,
        name=user.name,
        profile_picture=user.profile_picture,
        is_online=user.is_online,
        last_seen=user.last_seen,
        role=member.role,
        joined_at=member.joined_at,
    )


def list_workspace_members(db: Session, workspace_id: str) -> list[MemberRead]:
    """Return all members of the workspace with presence fields."""

    stmt = (
        select(Member)
        .where(Member.workspace_id == workspace_id)
        .order_by(Member.joined_at, Member.id)
        .options(selectinload(Member.user))
    )
    return [_serialize_member(member) for member in db.execute(stmt).scalars()]


def list_online_users(db: Session, workspace_id: str) -> list[MemberRead]:
    """Return workspace members whose user is currently marked online."""

    stmt = (
        select(Member)
        .join(User, Member.user_id == User.id)
        .where(Member.workspace_id == workspace_id, User.is_online.is_(True))
        .order_by(User.name, Member.id)
        .options(selectinload(Member.user))
    )
    return [_serialize_member(member) for member in db.execute(stmt).scalars()]
