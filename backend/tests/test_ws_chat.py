from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from app.api import ws as ws_module
from app.core.security import create_access_token
from app.models import User
from huddle.realtime import get_presence_registry


def chat_url(user_id: str) -> str:
    return f"/ws/chat?token={create_access_token(user_id)}"


def receive_event(connection: WebSocketTestSession, name: str) -> dict[str, Any]:
    """Return the data of the next *name* event, skipping keepalive pings."""

    while True:
        payload = connection.receive_json()
        if payload.get("event") == name:
            return payload.get("data", {})
        assert payload.get("event") == "ping", payload


def test_connection_without_token_is_closed_with_reason(client: TestClient):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/chat"):
            pass

    assert exc.value.code == 1008
    assert exc.value.reason == "Authentication required"


def test_connection_for_unknown_user_is_closed(client: TestClient):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(chat_url("no-such-user")):
            pass

    assert exc.value.code == 1008
    assert exc.value.reason == "User not found"


def test_ping_and_invalid_json(client: TestClient, chat_world):
    with client.websocket_connect(chat_url(chat_world.alice)) as connection:
        connection.send_json({"event": "ping"})
        assert connection.receive_json() == {"event": "pong", "data": {}}

        connection.send_text("{not json")
        assert connection.receive_json() == {"event": "error", "data": {"message": "Invalid payload"}}


def test_presence_and_messages_between_two_connections(client: TestClient, chat_world, session_factory):
    with client.websocket_connect(chat_url(chat_world.bob)) as bob:
        with client.websocket_connect(chat_url(chat_world.alice)) as alice:
            online = receive_event(bob, "user:online")
            assert online["user_id"] == chat_world.alice
            assert online["user"]["name"] == "Alice"

            alice.send_json(
                {
                    "event": "message:send",
                    "data": {"content": "hello", "chat_type": "workspace", "workspace_id": chat_world.workspace},
                }
            )
            mine = receive_event(alice, "message:new")
            theirs = receive_event(bob, "message:new")
            assert mine == theirs
            assert theirs["message"]["content"] == "hello"
            assert theirs["message"]["sender"]["name"] == "Alice"

            with session_factory() as session:
                assert session.get(User, chat_world.alice).is_online is True

        offline = receive_event(bob, "user:offline")
        assert offline == {"user_id": chat_world.alice}
        assert chat_world.alice not in get_presence_registry()


def test_cookie_session_authenticates_websocket(client: TestClient):
    client.post(
        "/api/auth/register",
        json={"email": "dora@example.com", "password": "explorer1", "name": "Dora"},
    )
    login = client.post("/api/auth/login", json={"email": "dora@example.com", "password": "explorer1"})
    assert login.status_code == 200

    with client.websocket_connect("/ws/chat") as connection:
        connection.send_json({"event": "room:join", "data": {"chat_type": "direct", "other_user_id": "zed"}})
        joined = receive_event(connection, "room:joined")
        assert joined["chat_type"] == "direct"
        assert joined["room_name"].startswith("direct:")


def test_connection_survives_keepalive_timeout(client: TestClient, chat_world) -> None:
    """Server side keepalive pings keep an idle socket open."""

    settings = ws_module.settings
    original_timeout = settings.websocket_keepalive_timeout_seconds
    original_interval = settings.websocket_keepalive_ping_interval_seconds

    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    try:
        with client.websocket_connect(chat_url(chat_world.alice)) as connection:
            assert connection.receive_json() == {"event": "ping"}
            assert connection.receive_json() == {"event": "ping"}

            connection.send_json({"event": "ping"})
            assert receive_event(connection, "pong") == {}
    finally:
        settings.websocket_keepalive_timeout_seconds = original_timeout
        settings.websocket_keepalive_ping_interval_seconds = original_interval


def test_binary_frame_is_rejected_without_dropping_the_connection(client: TestClient, chat_world):
    with client.websocket_connect(chat_url(chat_world.alice)) as connection:
        connection.send_bytes(b"\x00\x01")
        assert connection.receive_json() == {"event": "error", "data": {"message": "Invalid payload"}}

        connection.send_json({"event": "ping"})
        assert connection.receive_json() == {"event": "pong", "data": {}}
