"""Database models package."""

from .base import Base
from .chat import Member, Message, MessageReaction, Project, User, Workspace
from .enums import ChatType, MessageType, WorkspaceRole

__all__ = [
    "Base",
    "User",
    "Workspace",
    "Project",
    "Member",
    "Message",
    "MessageReaction",
    "ChatType",
    "MessageType",
    "WorkspaceRole",
]
