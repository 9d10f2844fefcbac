"""Pydantic schemas for API payloads."""

from .auth import LoginRequest, Token, UserCreate, UserRead
from .messages import (
    ChatUserPresence,
    ChatUserRead,
    DirectConversationRead,
    MarkReadRequest,
    MemberRead,
    MessageCreate,
    MessagePage,
    MessageRead,
    ReactionRead,
    ReplyPreview,
    WorkspaceStats,
)

__all__ = [
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "ChatUserRead",
    "ChatUserPresence",
    "ReplyPreview",
    "ReactionRead",
    "MessageRead",
    "MessagePage",
    "MessageCreate",
    "MarkReadRequest",
    "WorkspaceStats",
    "DirectConversationRead",
    "MemberRead",
]
