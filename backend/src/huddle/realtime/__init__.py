"""Realtime helpers for websocket chat rooms and presence."""

from .managers import (  # noqa: F401
    get_presence_registry,
    get_room_manager,
    shutdown_realtime,
    startup_realtime,
)
from .presence import PresenceRegistry  # noqa: F401
from .rooms import (  # noqa: F401
    ChatConnection,
    RoomConnectionManager,
    direct_room,
    room_name,
    safe_send_json,
    user_room,
)

__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_room_manager",
    "get_presence_registry",
    "PresenceRegistry",
    "ChatConnection",
    "RoomConnectionManager",
    "direct_room",
    "room_name",
    "safe_send_json",
    "user_room",
]
