"""WebSocket endpoint for real-time chat communication."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, Depends, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from starlette.concurrency import run_in_threadpool

from huddle.realtime import ChatConnection, get_presence_registry, get_room_manager, safe_send_json

from app.config import get_settings
from app.database import SessionFactory, get_db_session, get_session_factory
from app.monitoring.metrics import chat_connection_rejections_total
from app.services.chat_auth import ConnectionContext, ConnectionRejected, authenticate_connection
from app.services.chat_events import ChatEventDispatcher

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield frames from *receiver*, pinging the client whenever it goes quiet.

    A receive that times out is not an error: the client gets ``{"event":
    "ping"}`` (at most once per ping interval) and the loop keeps waiting.
    The generator ends when the socket disconnects or a ping cannot be sent.
    """

    payload = ping_payload or {"event": "ping"}
    timeout = float(timeout_seconds or 0)
    interval = float(ping_interval_seconds or 0)
    quiet_since = time.monotonic()
    pinged_at: float | None = None

    def ping_due(now: float) -> bool:
        if interval <= 0:
            return True
        if now - quiet_since < interval:
            return False
        return pinged_at is None or now - pinged_at >= interval

    while True:
        try:
            if timeout > 0:
                frame = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                frame = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                return
            now = time.monotonic()
            if ping_due(now):
                if not await safe_send_json(websocket, payload):
                    return
                pinged_at = now
            continue
        except (RuntimeError, WebSocketDisconnect):
            return

        quiet_since = time.monotonic()
        pinged_at = None
        yield frame


async def receive_frame(websocket: WebSocket) -> str | None:
    """Return the next text frame; binary frames come back as ``None``."""

    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(
            message.get("code", status.WS_1000_NORMAL_CLOSURE), message.get("reason")
        )
    text = message.get("text")
    return text if isinstance(text, str) else None


async def _authenticate(websocket: WebSocket, session_factory: SessionFactory) -> ConnectionContext | None:
    def _resolve() -> ConnectionContext:
        with get_db_session(session_factory) as db:
            return authenticate_connection(websocket, db)

    try:
        return await run_in_threadpool(_resolve)
    except ConnectionRejected as exc:
        chat_connection_rejections_total.labels(exc.reason).inc()
        logger.warning("Rejected chat connection from %s: %s", websocket.client, exc.reason)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.reason)
        return None


@router.websocket("/chat")
async def websocket_chat(
    websocket: WebSocket,
    session_factory: SessionFactory = Depends(get_session_factory),
) -> None:
    """Handle the chat event stream of one authenticated user."""

    context = await _authenticate(websocket, session_factory)
    if context is None:
        return

    await websocket.accept()
    connection = ChatConnection(
        websocket=websocket,
        user_id=context.user_id,
        workspace_id=context.workspace_id,
        user=context.user,
    )
    dispatcher = ChatEventDispatcher(
        connection,
        rooms=get_room_manager(),
        presence=get_presence_registry(),
        session_factory=session_factory,
        settings=settings,
    )

    await dispatcher.on_connect()
    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            lambda: receive_frame(websocket),
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            if raw_message is None:
                await dispatcher.send_error("Invalid payload")
                continue
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await dispatcher.send_error("Invalid payload")
                continue
            await dispatcher.dispatch(payload)
    finally:
        await dispatcher.on_disconnect()
