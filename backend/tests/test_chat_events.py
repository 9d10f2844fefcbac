from __future__ import annotations

import logging
from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from app.models import ChatType, Message, User
from app.services.chat_events import ChatEventDispatcher
from app.services.message_store import MessageScope, NewMessage, create_message, get_message, list_messages
from huddle.realtime import ChatConnection, PresenceRegistry, RoomConnectionManager, direct_room


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [payload["data"] for payload in self.sent if payload["event"] == name]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def rooms() -> RoomConnectionManager:
    return RoomConnectionManager()


@pytest.fixture()
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture()
def connect(rooms, presence, session_factory, chat_world):
    """Build a connected dispatcher for one of the seeded users."""

    names = {chat_world.alice: "Alice", chat_world.bob: "Bob", chat_world.carol: "Carol"}
    workspaces = {
        chat_world.alice: chat_world.workspace,
        chat_world.bob: chat_world.workspace,
        chat_world.carol: chat_world.other_workspace,
    }

    async def _connect(user_id: str) -> ChatEventDispatcher:
        connection = ChatConnection(
            websocket=DummyWebSocket(),
            user_id=user_id,
            workspace_id=workspaces.get(user_id),
            user={"id": user_id, "name": names.get(user_id), "profile_picture": None},
        )
        dispatcher = ChatEventDispatcher(
            connection, rooms=rooms, presence=presence, session_factory=session_factory
        )
        await dispatcher.on_connect()
        return dispatcher

    return _connect


def socket_of(dispatcher: ChatEventDispatcher) -> DummyWebSocket:
    return dispatcher.connection.websocket  # type: ignore[return-value]


@pytest.mark.anyio("asyncio")
async def test_workspace_message_reaches_other_members(connect, chat_world):
    alice = await connect(chat_world.alice)
    bob = await connect(chat_world.bob)

    await alice.dispatch(
        {
            "event": "message:send",
            "data": {"content": "hello", "chat_type": "workspace", "workspace_id": chat_world.workspace},
        }
    )

    received = socket_of(bob).events("message:new")
    assert len(received) == 1
    assert received[0]["message"]["content"] == "hello"
    assert received[0]["message"]["sender"]["name"] == "Alice"
    assert socket_of(alice).events("message:new") == received


@pytest.mark.anyio("asyncio")
async def test_send_to_foreign_workspace_is_denied(connect, chat_world, session_factory):
    carol = await connect(chat_world.carol)

    await carol.dispatch(
        {
            "event": "message:send",
            "data": {"content": "let me in", "chat_type": "workspace", "workspace_id": chat_world.workspace},
        }
    )

    assert socket_of(carol).events("error") == [{"message": "Access denied to workspace"}]
    with session_factory() as session:
        assert session.query(Message).count() == 0


@pytest.mark.anyio("asyncio")
async def test_invalid_frames_become_error_events(connect, chat_world):
    alice = await connect(chat_world.alice)

    await alice.dispatch({"event": "voice:offer"})
    await alice.dispatch({"event": "message:send", "data": {"content": "", "chat_type": "workspace"}})
    await alice.dispatch("not a dict")

    assert socket_of(alice).events("error") == [
        {"message": "Unsupported event type"},
        {"message": "Message content is required"},
        {"message": "Invalid payload"},
    ]


@pytest.mark.anyio("asyncio")
async def test_project_message_is_stored_under_owning_workspace(connect, chat_world, session_factory):
    alice = await connect(chat_world.alice)
    await alice.dispatch(
        {"event": "room:join", "data": {"chat_type": "project", "project_id": chat_world.project}}
    )
    await alice.dispatch(
        {
            "event": "message:send",
            "data": {"content": "ship it", "chat_type": "project", "project_id": chat_world.project},
        }
    )

    joined = socket_of(alice).events("room:joined")
    assert joined == [{"chat_type": "project", "room_name": f"project:{chat_world.project}"}]
    [payload] = socket_of(alice).events("message:new")
    assert payload["message"]["workspace_id"] == chat_world.workspace
    assert payload["message"]["project_id"] == chat_world.project


@pytest.mark.anyio("asyncio")
async def test_project_join_requires_workspace_membership(connect, chat_world):
    carol = await connect(chat_world.carol)

    await carol.dispatch(
        {"event": "room:join", "data": {"chat_type": "project", "project_id": chat_world.project}}
    )
    await carol.dispatch(
        {"event": "room:join", "data": {"chat_type": "workspace", "workspace_id": chat_world.workspace}}
    )

    assert socket_of(carol).events("error") == [
        {"message": "Access denied to project chat"},
        {"message": "Access denied to workspace chat"},
    ]
    assert socket_of(carol).events("room:joined") == []


@pytest.mark.anyio("asyncio")
async def test_direct_rooms_are_symmetric_and_deliver_to_both(connect, chat_world, rooms):
    alice = await connect(chat_world.alice)
    bob = await connect(chat_world.bob)

    await bob.dispatch({"event": "room:join", "data": {"chat_type": "direct", "other_user_id": chat_world.alice}})
    await alice.dispatch({"event": "room:join", "data": {"chat_type": "direct", "other_user_id": chat_world.bob}})

    expected = direct_room(chat_world.alice, chat_world.bob)
    assert socket_of(alice).events("room:joined")[0]["room_name"] == expected
    assert socket_of(bob).events("room:joined")[0]["room_name"] == expected
    assert rooms.members(expected) == {alice.connection, bob.connection}

    await alice.dispatch(
        {
            "event": "message:send",
            "data": {"content": "psst", "chat_type": "direct", "other_user_id": chat_world.bob},
        }
    )

    [payload] = socket_of(bob).events("message:new")
    assert payload["message"]["participants"] == sorted([chat_world.alice, chat_world.bob])
    assert socket_of(alice).events("message:new") == [payload]


@pytest.mark.anyio("asyncio")
async def test_sender_outside_room_still_gets_own_message(connect, chat_world):
    alice = await connect(chat_world.alice)

    await alice.dispatch(
        {
            "event": "message:send",
            "data": {"content": "hello ghost", "chat_type": "direct", "other_user_id": "ghost"},
        }
    )

    [payload] = socket_of(alice).events("message:new")
    assert payload["message"]["content"] == "hello ghost"


@pytest.mark.anyio("asyncio")
async def test_edit_of_foreign_message_is_refused(connect, chat_world, session_factory):
    with session_factory() as session:
        original = create_message(
            session,
            NewMessage(
                content="bob's words",
                sender_id=chat_world.bob,
                chat_type=ChatType.WORKSPACE,
                workspace_id=chat_world.workspace,
            ),
        )

    alice = await connect(chat_world.alice)
    await alice.dispatch(
        {"event": "message:edit", "data": {"message_id": original.id, "content": "alice's words"}}
    )

    assert socket_of(alice).events("error") == [{"message": "Message not found or cannot be edited"}]
    assert socket_of(alice).events("message:edited") == []
    with session_factory() as session:
        assert get_message(session, original.id).content == "bob's words"


@pytest.mark.anyio("asyncio")
async def test_edit_delete_and_react_fan_out_to_workspace(connect, chat_world, session_factory):
    alice = await connect(chat_world.alice)
    bob = await connect(chat_world.bob)

    await alice.dispatch(
        {
            "event": "message:send",
            "data": {"content": "draft", "chat_type": "workspace", "workspace_id": chat_world.workspace},
        }
    )
    message_id = socket_of(bob).events("message:new")[0]["message"]["id"]

    await alice.dispatch({"event": "message:edit", "data": {"message_id": message_id, "content": "final"}})
    await bob.dispatch({"event": "message:react", "data": {"message_id": message_id, "emoji": "🎉"}})
    await alice.dispatch({"event": "message:delete", "data": {"message_id": message_id}})

    [edited] = socket_of(bob).events("message:edited")
    assert edited["message_id"] == message_id
    assert edited["content"] == "final"
    assert edited["is_edited"] is True
    assert edited["edited_at"]

    [reaction] = socket_of(alice).events("message:reaction")
    assert reaction["message_id"] == message_id
    assert [(item["user"]["name"], item["emoji"]) for item in reaction["reactions"]] == [("Bob", "🎉")]

    assert socket_of(bob).events("message:deleted") == [{"message_id": message_id}]
    with session_factory() as session:
        page = list_messages(session, MessageScope.workspace(chat_world.workspace))
    assert page.messages == []


@pytest.mark.anyio("asyncio")
async def test_typing_is_broadcast_to_the_room_including_sender(connect, chat_world):
    alice = await connect(chat_world.alice)
    bob = await connect(chat_world.bob)
    scope = {"chat_type": "workspace", "workspace_id": chat_world.workspace}

    await alice.dispatch({"event": "typing:start", "data": scope})
    await alice.dispatch({"event": "typing:stop", "data": scope})

    room = f"workspace:{chat_world.workspace}"
    for dispatcher in (alice, bob):
        started = socket_of(dispatcher).events("typing:start")
        stopped = socket_of(dispatcher).events("typing:stop")
        assert started == [
            {"room_name": room, "user_id": chat_world.alice, "user": alice.connection.user}
        ]
        assert stopped == [{"room_name": room, "user_id": chat_world.alice}]


@pytest.mark.anyio("asyncio")
async def test_typing_with_unresolvable_scope_is_ignored(connect, chat_world):
    alice = await connect(chat_world.alice)
    before = list(socket_of(alice).sent)

    await alice.dispatch({"event": "typing:start", "data": {"chat_type": "workspace"}})
    await alice.dispatch({"event": "typing:start", "data": {"chat_type": "nonsense"}})
    await alice.dispatch({"event": "typing:start"})

    assert socket_of(alice).sent == before


@pytest.mark.anyio("asyncio")
async def test_room_leave_and_ping(connect, chat_world, rooms):
    alice = await connect(chat_world.alice)
    room = f"workspace:{chat_world.workspace}"

    await alice.dispatch({"event": "room:leave", "data": {"room_name": room}})
    await alice.dispatch({"event": "ping"})

    assert socket_of(alice).events("room:left") == [{"room_name": room}]
    assert socket_of(alice).events("pong") == [{}]
    assert alice.connection not in rooms.members(room)


@pytest.mark.anyio("asyncio")
async def test_presence_online_and_offline_events(connect, chat_world, presence, rooms, session_factory):
    bob = await connect(chat_world.bob)
    alice = await connect(chat_world.alice)

    assert socket_of(bob).events("user:online") == [
        {"user_id": chat_world.alice, "user": alice.connection.user}
    ]
    assert socket_of(alice).events("user:online") == []
    assert chat_world.alice in presence
    with session_factory() as session:
        assert session.get(User, chat_world.alice).is_online is True

    await alice.on_disconnect()

    assert socket_of(bob).events("user:offline") == [{"user_id": chat_world.alice}]
    assert chat_world.alice not in presence
    assert alice.connection.rooms == set()
    assert rooms.members(f"user:{chat_world.alice}") == set()
    with session_factory() as session:
        assert session.get(User, chat_world.alice).is_online is False


@pytest.mark.anyio("asyncio")
async def test_handler_failures_are_reported_generically(connect, chat_world, monkeypatch, caplog):
    alice = await connect(chat_world.alice)

    def explode(*args, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr("app.services.chat_events.create_message", explode)

    with caplog.at_level(logging.ERROR):
        await alice.dispatch(
            {
                "event": "message:send",
                "data": {"content": "hello", "chat_type": "workspace", "workspace_id": chat_world.workspace},
            }
        )

    assert socket_of(alice).events("error") == [{"message": "Failed to send message"}]
    assert any("Error handling message:send" in record.getMessage() for record in caplog.records)


@pytest.mark.anyio("asyncio")
async def test_reactions_from_outside_the_room_are_refused(connect, chat_world, session_factory):
    with session_factory() as session:
        dave = User(email="dave@example.com", name="Dave", hashed_password="hashed")
        session.add(dave)
        session.commit()
        dave_id = dave.id
        workspace_post = create_message(
            session,
            NewMessage(
                content="team news",
                sender_id=chat_world.alice,
                chat_type=ChatType.WORKSPACE,
                workspace_id=chat_world.workspace,
            ),
        )
        private = create_message(
            session,
            NewMessage(
                content="just us",
                sender_id=chat_world.alice,
                chat_type=ChatType.DIRECT,
                participants=[chat_world.alice, chat_world.bob],
            ),
        )

    dave_connection = await connect(dave_id)
    carol = await connect(chat_world.carol)

    await dave_connection.dispatch(
        {"event": "message:react", "data": {"message_id": workspace_post.id, "emoji": "x"}}
    )
    await carol.dispatch({"event": "message:react", "data": {"message_id": private.id, "emoji": "x"}})

    for dispatcher in (dave_connection, carol):
        assert socket_of(dispatcher).events("error") == [{"message": "Message not found"}]
        assert socket_of(dispatcher).events("message:reaction") == []
    with session_factory() as session:
        assert get_message(session, workspace_post.id).reactions == []
        assert get_message(session, private.id).reactions == []
