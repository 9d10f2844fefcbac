"""Room naming and room-scoped websocket fan-out."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Sequence, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.models.enums import ChatType
from app.monitoring.metrics import realtime_events_total

logger = logging.getLogger(__name__)


def direct_room(user_id: str, other_user_id: str) -> str:
    """Return the room shared by two direct-chat participants, independent of order."""

    first, second = sorted((str(user_id), str(other_user_id)))
    return f"direct:{first}:{second}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def room_name(
    chat_type: ChatType | str,
    *,
    workspace_id: str | None = None,
    project_id: str | None = None,
    participants: Sequence[str] | None = None,
) -> str:
    """Compute the broadcast room for a chat scope.

    Raises :class:`ValueError` when the chat type is unknown or its scope
    identifier is missing.
    """

    kind = ChatType(chat_type)
    if kind is ChatType.WORKSPACE:
        if not workspace_id:
            raise ValueError("workspace_id is required for workspace rooms")
        return f"workspace:{workspace_id}"
    if kind is ChatType.PROJECT:
        if not project_id:
            raise ValueError("project_id is required for project rooms")
        return f"project:{project_id}"
    if not participants or len(participants) != 2 or not all(participants):
        raise ValueError("two participants are required for direct rooms")
    return direct_room(participants[0], participants[1])


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass(eq=False)
class ChatConnection:
    """One authenticated websocket connection and the rooms it joined."""

    websocket: WebSocket
    user_id: str
    workspace_id: str | None = None
    user: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: Set[str] = field(default_factory=set)


def _topic(room: str) -> str:
    return room.split(":", 1)[0]


class RoomConnectionManager:
    """Track connections per room and fan events out to room members."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[ChatConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def join(self, room: str, connection: ChatConnection) -> None:
        async with self._lock:
            self._rooms[room].add(connection)
            connection.rooms.add(room)

    async def leave(self, room: str, connection: ChatConnection) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if not members or connection not in members:
                return
            members.discard(connection)
            connection.rooms.discard(room)
            if not members:
                self._rooms.pop(room, None)

    async def leave_all(self, connection: ChatConnection) -> list[str]:
        async with self._lock:
            left = sorted(connection.rooms)
            for room in left:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(connection)
                if not members:
                    self._rooms.pop(room, None)
            connection.rooms.clear()
            return left

    def members(self, room: str) -> Set[ChatConnection]:
        return set(self._rooms.get(room, ()))

    def rooms_for(self, connection: ChatConnection) -> Set[str]:
        return set(connection.rooms)

    def room_count(self) -> int:
        return len(self._rooms)

    async def send(self, connection: ChatConnection, event: str, data: dict[str, Any]) -> bool:
        realtime_events_total.labels("connection", "outbound", event).inc()
        return await safe_send_json(connection.websocket, {"event": event, "data": data})

    async def broadcast(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        *,
        exclude: Iterable[ChatConnection] | None = None,
    ) -> int:
        """Send ``{"event", "data"}`` to every member of *room*; returns deliveries."""

        connections = self._rooms.get(room, set()).copy()
        exclude_set = set(exclude or [])
        payload = {"event": event, "data": data}
        delivered = 0
        for connection in connections:
            if connection in exclude_set:
                continue
            if await safe_send_json(connection.websocket, payload):
                delivered += 1
        realtime_events_total.labels(_topic(room), "outbound", event).inc()
        return delivered

    async def clear(self) -> None:
        async with self._lock:
            for members in self._rooms.values():
                for connection in members:
                    connection.rooms.clear()
            self._rooms.clear()


__all__ = [
    "ChatConnection",
    "RoomConnectionManager",
    "direct_room",
    "room_name",
    "safe_send_json",
    "user_room",
]
