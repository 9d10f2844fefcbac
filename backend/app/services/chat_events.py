"""Per-connection dispatcher for inbound websocket chat events."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from huddle.realtime import ChatConnection, PresenceRegistry, RoomConnectionManager, room_name, user_room

from app.config import Settings, get_settings
from app.database import SessionFactory, get_db_session
from app.models import ChatType
from app.monitoring.metrics import (
    chat_handler_errors_total,
    chat_messages_total,
    realtime_connections,
    realtime_events_total,
)
from app.schemas.chat_events import (
    InboundEventError,
    MessageDeleteEvent,
    MessageEditEvent,
    MessageReactEvent,
    MessageSendEvent,
    PingEvent,
    RoomJoinEvent,
    RoomLeaveEvent,
    TypingData,
    TypingStartEvent,
    TypingStopEvent,
    parse_inbound_event,
)
from app.schemas.messages import MessageRead
from app.services.access import has_workspace_access, resolve_project_workspace
from app.services.errors import ChatAccessError, ChatError
from app.services.message_store import (
    NewMessage,
    create_message,
    edit_message,
    soft_delete_message,
    toggle_reaction,
)
from app.services.presence import persist_presence

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FAILURE_MESSAGES = {
    "message:send": "Failed to send message",
    "message:edit": "Failed to edit message",
    "message:delete": "Failed to delete message",
    "message:react": "Failed to react to message",
    "typing:start": "Failed to update typing status",
    "typing:stop": "Failed to update typing status",
    "room:join": "Failed to join room",
    "room:leave": "Failed to leave room",
}


def scope_room(message: MessageRead) -> str:
    """Room a freshly stored message is announced to."""

    return room_name(
        message.chat_type,
        workspace_id=message.workspace_id,
        project_id=message.project_id,
        participants=message.participants,
    )


def update_room(message: MessageRead) -> str:
    """Room that receives edits, deletions and reactions of a stored message."""

    if message.workspace_id:
        return room_name(ChatType.WORKSPACE, workspace_id=message.workspace_id)
    return scope_room(message)


def _project_workspace_for(db: Session, user_id: str, project_id: str) -> str | None:
    workspace_id = resolve_project_workspace(db, project_id)
    if workspace_id is None or not has_workspace_access(db, user_id, workspace_id):
        return None
    return workspace_id


class ChatEventDispatcher:
    """Validate, authorize, persist and fan out the events of one connection.

    Events of a connection are handled one at a time by its receive loop;
    store calls run in the threadpool with their own short-lived session.
    """

    def __init__(
        self,
        connection: ChatConnection,
        *,
        rooms: RoomConnectionManager,
        presence: PresenceRegistry,
        session_factory: SessionFactory,
        settings: Settings | None = None,
    ) -> None:
        self.connection = connection
        self._rooms = rooms
        self._presence = presence
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "message:send": self._handle_send,
            "message:edit": self._handle_edit,
            "message:delete": self._handle_delete,
            "message:react": self._handle_react,
            "typing:start": self._handle_typing,
            "typing:stop": self._handle_typing,
            "room:join": self._handle_join,
            "room:leave": self._handle_leave,
            "ping": self._handle_ping,
        }

    @property
    def user_id(self) -> str:
        return self.connection.user_id

    async def _run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        def call() -> T:
            with get_db_session(self._session_factory) as db:
                return func(db, *args, **kwargs)

        return await run_in_threadpool(call)

    async def send_error(self, message: str) -> None:
        await self._rooms.send(self.connection, "error", {"message": message})

    async def _announce(self, room: str, event: str, data: dict[str, Any]) -> None:
        # The sender always gets the persisted copy, even when not joined to the room.
        await self._rooms.broadcast(room, event, data)
        if room not in self.connection.rooms:
            await self._rooms.send(self.connection, event, data)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def on_connect(self) -> None:
        connection = self.connection
        replaced = self._presence.register(connection.user_id, connection.id)
        if replaced is not None:
            logger.info("User %s reconnected; replacing connection %s", connection.user_id, replaced)
        realtime_connections.labels("chat").inc()

        try:
            await self._run(persist_presence, connection.user_id, online=True)
        except Exception:
            logger.exception("Failed to persist online state for user %s", connection.user_id)

        await self._rooms.join(user_room(connection.user_id), connection)
        if connection.workspace_id:
            workspace_room = room_name(ChatType.WORKSPACE, workspace_id=connection.workspace_id)
            await self._rooms.join(workspace_room, connection)
            await self._rooms.broadcast(
                workspace_room,
                "user:online",
                {"user_id": connection.user_id, "user": connection.user},
                exclude=[connection],
            )
        logger.info("User %s connected to chat (connection %s)", connection.user_id, connection.id)

    async def on_disconnect(self) -> None:
        connection = self.connection
        await self._rooms.leave_all(connection)
        self._presence.unregister(connection.user_id)
        realtime_connections.labels("chat").dec()

        try:
            await self._run(persist_presence, connection.user_id, online=False)
        except Exception:
            logger.exception("Failed to persist offline state for user %s", connection.user_id)

        if connection.workspace_id:
            await self._rooms.broadcast(
                room_name(ChatType.WORKSPACE, workspace_id=connection.workspace_id),
                "user:offline",
                {"user_id": connection.user_id},
            )
        logger.info("User %s disconnected from chat (connection %s)", connection.user_id, connection.id)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def dispatch(self, payload: Any) -> None:
        """Handle one decoded inbound frame; failures become ``error`` events."""

        try:
            event = parse_inbound_event(payload)
        except InboundEventError as exc:
            realtime_events_total.labels("chat", "inbound", exc.event or "unknown").inc()
            await self.send_error(exc.message)
            return

        name = event.event
        realtime_events_total.labels("chat", "inbound", name).inc()
        try:
            await self._handlers[name](event)
        except ChatError as exc:
            await self.send_error(exc.message)
        except Exception:
            chat_handler_errors_total.labels(name).inc()
            logger.exception("Error handling %s from user %s", name, self.user_id)
            await self.send_error(_FAILURE_MESSAGES.get(name, "Failed to process event"))

    async def _handle_ping(self, event: PingEvent) -> None:
        await self._rooms.send(self.connection, "pong", {})

    async def _handle_send(self, event: MessageSendEvent) -> None:
        data = event.data
        workspace_id: str | None = None
        project_id: str | None = None
        participants: list[str] | None = None

        if data.chat_type is ChatType.WORKSPACE:
            if not await self._run(has_workspace_access, self.user_id, data.workspace_id):
                raise ChatAccessError("Access denied to workspace")
            workspace_id = data.workspace_id
        elif data.chat_type is ChatType.PROJECT:
            workspace_id = await self._run(_project_workspace_for, self.user_id, data.project_id)
            if workspace_id is None:
                raise ChatAccessError("Access denied to project")
            project_id = data.project_id
        else:
            participants = sorted([self.user_id, data.other_user_id])

        message = await self._run(
            create_message,
            NewMessage(
                content=data.content,
                sender_id=self.user_id,
                chat_type=data.chat_type,
                workspace_id=workspace_id,
                project_id=project_id,
                participants=participants,
                message_type=data.message_type,
                reply_to=data.reply_to,
            ),
        )
        chat_messages_total.labels(message.chat_type.value).inc()

        room = scope_room(message)
        await self._announce(room, "message:new", {"message": message.model_dump(mode="json")})
        logger.info("Message sent by %s in %s chat: %s", self.user_id, message.chat_type.value, room)

    async def _handle_edit(self, event: MessageEditEvent) -> None:
        data = event.data
        message = await self._run(
            edit_message,
            data.message_id,
            self.user_id,
            data.content,
            workspace_id=self.connection.workspace_id,
        )
        room = update_room(message)
        await self._announce(
            room,
            "message:edited",
            {
                "message_id": message.id,
                "content": message.content,
                "is_edited": message.is_edited,
                "edited_at": message.edited_at.isoformat() if message.edited_at else None,
            },
        )
        logger.info("Message %s edited by %s", message.id, self.user_id)

    async def _handle_delete(self, event: MessageDeleteEvent) -> None:
        message = await self._run(
            soft_delete_message,
            event.data.message_id,
            self.user_id,
            workspace_id=self.connection.workspace_id,
        )
        await self._announce(update_room(message), "message:deleted", {"message_id": message.id})
        logger.info("Message %s deleted by %s", message.id, self.user_id)

    async def _handle_react(self, event: MessageReactEvent) -> None:
        data = event.data
        message, reactions = await self._run(
            toggle_reaction,
            data.message_id,
            self.user_id,
            data.emoji,
            workspace_id=self.connection.workspace_id,
        )
        await self._announce(
            update_room(message),
            "message:reaction",
            {
                "message_id": message.id,
                "reactions": [reaction.model_dump(mode="json") for reaction in reactions],
            },
        )
        logger.info("Message %s reaction %s toggled by %s", message.id, data.emoji, self.user_id)

    def _typing_room(self, data: TypingData) -> str | None:
        try:
            chat_type = ChatType(data.chat_type)
        except ValueError:
            return None
        try:
            if chat_type is ChatType.DIRECT:
                if not data.other_user_id:
                    return None
                return room_name(chat_type, participants=[self.user_id, data.other_user_id])
            return room_name(chat_type, workspace_id=data.workspace_id, project_id=data.project_id)
        except ValueError:
            return None

    async def _handle_typing(self, event: TypingStartEvent | TypingStopEvent) -> None:
        room = self._typing_room(event.data)
        if room is None:
            return
        payload: dict[str, Any] = {"room_name": room, "user_id": self.user_id}
        if event.event == "typing:start":
            payload["user"] = self.connection.user
        await self._rooms.broadcast(room, event.event, payload)

    async def _handle_join(self, event: RoomJoinEvent) -> None:
        data = event.data
        if data.chat_type is ChatType.WORKSPACE:
            allowed = await self._run(has_workspace_access, self.user_id, data.workspace_id)
            room = room_name(ChatType.WORKSPACE, workspace_id=data.workspace_id)
        elif data.chat_type is ChatType.PROJECT:
            allowed = await self._run(_project_workspace_for, self.user_id, data.project_id) is not None
            room = room_name(ChatType.PROJECT, project_id=data.project_id)
        else:
            allowed = True
            room = room_name(ChatType.DIRECT, participants=[self.user_id, data.other_user_id])

        if not allowed:
            raise ChatAccessError(f"Access denied to {data.chat_type.value} chat")

        await self._rooms.join(room, self.connection)
        await self._rooms.send(
            self.connection, "room:joined", {"chat_type": data.chat_type.value, "room_name": room}
        )
        logger.info("User %s joined %s room: %s", self.user_id, data.chat_type.value, room)

    async def _handle_leave(self, event: RoomLeaveEvent) -> None:
        room = event.data.room_name
        await self._rooms.leave(room, self.connection)
        await self._rooms.send(self.connection, "room:left", {"room_name": room})
        logger.info("User %s left room: %s", self.user_id, room)


__all__ = ["ChatEventDispatcher", "scope_room", "update_room"]
