"""Typed payloads for inbound websocket chat events."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from app.config import get_settings
from app.models.enums import ChatType, MessageType

settings = get_settings()

INVALID_PAYLOAD = "Invalid payload"
UNSUPPORTED_EVENT = "Unsupported event type"


class _EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ChatScope(_EventData):
    """Chat type plus the scope identifier matching it."""

    missing_scope_messages: ClassVar[dict[ChatType, str]] = {
        ChatType.WORKSPACE: "Workspace ID is required for workspace chat",
        ChatType.PROJECT: "Project ID is required for project chat",
        ChatType.DIRECT: "Other user ID is required for direct messages",
    }

    chat_type: ChatType | None = None
    workspace_id: str | None = None
    project_id: str | None = None
    other_user_id: str | None = None

    @field_validator("chat_type", mode="before")
    @classmethod
    def validate_chat_type(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Valid chat type is required")
        try:
            return ChatType(value)
        except ValueError as exc:
            raise ValueError("Valid chat type is required") from exc

    @model_validator(mode="after")
    def ensure_scope_id(self) -> "ChatScope":
        if self.chat_type is None:
            raise ValueError("Valid chat type is required")
        scope_id = {
            ChatType.WORKSPACE: self.workspace_id,
            ChatType.PROJECT: self.project_id,
            ChatType.DIRECT: self.other_user_id,
        }[self.chat_type]
        if not scope_id:
            raise ValueError(self.missing_scope_messages[self.chat_type])
        return self


def _validate_content(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Message content is required")
    limit = settings.chat_message_max_length
    if len(value) > limit:
        raise ValueError(f"Message too long (max {limit} characters)")
    return value.strip()


class SendMessageData(ChatScope):
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    reply_to: str | None = None

    # Content is checked before the scope so an empty body is reported first.
    @model_validator(mode="before")
    @classmethod
    def check_content_first(cls, data: Any) -> Any:
        if isinstance(data, dict):
            _validate_content(data.get("content"))
        return data

    @field_validator("content")
    @classmethod
    def normalize_content(cls, value: str) -> str:
        return _validate_content(value)


class EditMessageData(_EventData):
    message_id: str = ""
    content: str = ""

    @model_validator(mode="before")
    @classmethod
    def check_content_first(cls, data: Any) -> Any:
        if isinstance(data, dict):
            _validate_content(data.get("content"))
        return data

    @field_validator("content")
    @classmethod
    def normalize_content(cls, value: str) -> str:
        return _validate_content(value)


class DeleteMessageData(_EventData):
    message_id: str = ""


class ReactMessageData(_EventData):
    message_id: str = ""
    emoji: str | None = Field(default=None, validate_default=True)

    @field_validator("emoji", mode="before")
    @classmethod
    def validate_emoji(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Valid emoji is required")
        emoji = value.strip()
        if len(emoji) > settings.chat_reaction_max_length:
            raise ValueError("Valid emoji is required")
        return emoji


class TypingData(_EventData):
    """Typing indicator scope; unresolvable scopes are ignored, not rejected."""

    chat_type: str | None = None
    workspace_id: str | None = None
    project_id: str | None = None
    other_user_id: str | None = None


class RoomJoinData(ChatScope):
    missing_scope_messages: ClassVar[dict[ChatType, str]] = {
        ChatType.WORKSPACE: "Workspace ID is required",
        ChatType.PROJECT: "Project ID is required",
        ChatType.DIRECT: "Other user ID is required",
    }


class RoomLeaveData(_EventData):
    room_name: str | None = Field(default=None, validate_default=True)

    @field_validator("room_name", mode="before")
    @classmethod
    def validate_room_name(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Room name is required")
        return value.strip()


class _InboundEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MessageSendEvent(_InboundEvent):
    event: Literal["message:send"]
    data: SendMessageData


class MessageEditEvent(_InboundEvent):
    event: Literal["message:edit"]
    data: EditMessageData


class MessageDeleteEvent(_InboundEvent):
    event: Literal["message:delete"]
    data: DeleteMessageData


class MessageReactEvent(_InboundEvent):
    event: Literal["message:react"]
    data: ReactMessageData


class TypingStartEvent(_InboundEvent):
    event: Literal["typing:start"]
    data: TypingData = Field(default_factory=TypingData)


class TypingStopEvent(_InboundEvent):
    event: Literal["typing:stop"]
    data: TypingData = Field(default_factory=TypingData)


class RoomJoinEvent(_InboundEvent):
    event: Literal["room:join"]
    data: RoomJoinData


class RoomLeaveEvent(_InboundEvent):
    event: Literal["room:leave"]
    data: RoomLeaveData


class PingEvent(_InboundEvent):
    event: Literal["ping"]


InboundEvent = Annotated[
    Union[
        MessageSendEvent,
        MessageEditEvent,
        MessageDeleteEvent,
        MessageReactEvent,
        TypingStartEvent,
        TypingStopEvent,
        RoomJoinEvent,
        RoomLeaveEvent,
        PingEvent,
    ],
    Field(discriminator="event"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)

SUPPORTED_EVENTS = frozenset(
    {
        "message:send",
        "message:edit",
        "message:delete",
        "message:react",
        "typing:start",
        "typing:stop",
        "room:join",
        "room:leave",
        "ping",
    }
)


class InboundEventError(ValueError):
    """Raised when an inbound frame cannot be turned into a typed event."""

    def __init__(self, message: str, event: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.event = event


def _first_error_message(exc: ValidationError) -> str:
    for error in exc.errors():
        ctx = error.get("ctx") or {}
        original = ctx.get("error")
        if isinstance(original, ValueError) and str(original):
            return str(original)
    return INVALID_PAYLOAD


def parse_inbound_event(payload: Any) -> InboundEvent:
    """Validate a decoded websocket frame into one of the inbound event models."""

    if not isinstance(payload, dict):
        raise InboundEventError(INVALID_PAYLOAD)
    event = payload.get("event")
    if not isinstance(event, str) or event not in SUPPORTED_EVENTS:
        raise InboundEventError(UNSUPPORTED_EVENT, event if isinstance(event, str) else None)

    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InboundEventError(INVALID_PAYLOAD, event)

    try:
        return _inbound_adapter.validate_python({"event": event, "data": data})
    except ValidationError as exc:
        raise InboundEventError(_first_error_message(exc), event) from exc


__all__ = [
    "ChatScope",
    "SendMessageData",
    "EditMessageData",
    "DeleteMessageData",
    "ReactMessageData",
    "TypingData",
    "RoomJoinData",
    "RoomLeaveData",
    "MessageSendEvent",
    "MessageEditEvent",
    "MessageDeleteEvent",
    "MessageReactEvent",
    "TypingStartEvent",
    "TypingStopEvent",
    "RoomJoinEvent",
    "RoomLeaveEvent",
    "PingEvent",
    "InboundEvent",
    "InboundEventError",
    "parse_inbound_event",
    "INVALID_PAYLOAD",
    "UNSUPPORTED_EVENT",
]
