from __future__ import annotations

from enum import Enum


class ChatType(str, Enum):
    """Scopes a chat message can belong to."""

    WORKSPACE = "workspace"
    PROJECT = "project"
    DIRECT = "direct"


class MessageType(str, Enum):
    """Kinds of chat message payloads."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class WorkspaceRole(str, Enum):
    """Roles that a user can have inside a workspace."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
