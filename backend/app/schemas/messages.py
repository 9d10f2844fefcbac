"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ChatType, MessageType, WorkspaceRole


class ChatUserRead(BaseModel):
    """Lightweight sender information for displaying messages."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    profile_picture: str | None = None


class ChatUserPresence(ChatUserRead):
    """Sender information extended with persisted presence fields."""

    is_online: bool = False
    last_seen: datetime | None = None


class ReplyPreview(BaseModel):
    """Shallow preview of the message being replied to."""

    id: str
    content: str
    sender: ChatUserRead | None = None
    is_deleted: bool = False


class ReactionRead(BaseModel):
    """Single emoji reaction with reactor display fields."""

    user: ChatUserRead
    emoji: str
    created_at: datetime | None = None


class MessageRead(BaseModel):
    """Serialized representation of a chat message."""

    id: str
    content: str
    sender: ChatUserRead
    chat_type: ChatType
    workspace_id: str | None = None
    project_id: str | None = None
    participants: list[str] = Field(default_factory=list)
    message_type: MessageType = MessageType.TEXT
    reply_to: ReplyPreview | None = None
    reactions: list[ReactionRead] = Field(default_factory=list)
    is_edited: bool = False
    edited_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MessagePage(BaseModel):
    """Offset-based page of messages ordered oldest first."""

    messages: list[MessageRead]
    has_more: bool = False
    total: int = Field(0, ge=0)


class MessageCreate(BaseModel):
    """Payload for sending a message over HTTP."""

    content: str = Field(..., description="Message text, trimmed before storing")
    message_type: MessageType = MessageType.TEXT
    reply_to: str | None = Field(default=None, description="Identifier of the message being replied to")


class MarkReadRequest(BaseModel):
    """Payload for marking messages as read."""

    last_message_id: str | None = None


class WorkspaceStats(BaseModel):
    """Snapshot of workspace chat activity, recomputed on demand."""

    total_messages: int = 0
    today_messages: int = 0
    active_users: int = 0


class DirectConversationRead(BaseModel):
    """Direct conversation summary for the caller."""

    participants: list[str]
    other_user: ChatUserPresence | None = None
    last_message: MessageRead
    unread_count: int = Field(0, ge=0)


class MemberRead(ChatUserPresence):
    """Workspace member with presence fields and role."""

    role: WorkspaceRole
    joined_at: datetime | None = None
