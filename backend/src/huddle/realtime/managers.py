"""Process-wide realtime state and its lifecycle."""

from __future__ import annotations

import logging

from .presence import PresenceRegistry
from .rooms import RoomConnectionManager

logger = logging.getLogger(__name__)

room_manager = RoomConnectionManager()
presence_registry = PresenceRegistry()


async def startup_realtime() -> None:
    await room_manager.clear()
    presence_registry.clear()
    logger.info("Realtime chat state initialised")


async def shutdown_realtime() -> None:
    online = len(presence_registry)
    await room_manager.clear()
    presence_registry.clear()
    logger.info("Realtime chat state cleared (%s users were online)", online)


# Convenience accessors exposed to the FastAPI layer ----------------------


def get_room_manager() -> RoomConnectionManager:
    return room_manager


def get_presence_registry() -> PresenceRegistry:
    return presence_registry


__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_room_manager",
    "get_presence_registry",
]
