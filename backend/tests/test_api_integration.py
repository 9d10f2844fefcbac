"""Integration tests exercising API endpoints via FastAPI's TestClient."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.models import User


def register_user(
    client: TestClient,
    email: str,
    password: str,
    name: str = "Test",
) -> dict[str, Any]:
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": name},
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def test_register_login_cookie_and_logout_flow(client: TestClient):
    """Registering, logging in and using the session cookie."""

    data = register_user(client, "alice@example.com", "wonderland", "Alice")
    assert data["email"] == "alice@example.com"
    assert data["is_online"] is False

    duplicate = client.post(
        "/api/auth/register",
        json={"email": "ALICE@example.com", "password": "wonderland", "name": "Alice again"},
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Email already exists"

    bad_login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "not-the-one"})
    assert bad_login.status_code == 401

    login_response = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "wonderland"}
    )
    assert login_response.status_code == 200
    token_data = login_response.json()
    assert token_data["token_type"] == "bearer"
    assert isinstance(token_data["access_token"], str)
    assert client.cookies.get("access_token") == token_data["access_token"]

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["name"] == "Alice"

    logout = client.post("/api/auth/logout")
    assert logout.status_code == 204
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


def test_chat_routes_require_authentication(client: TestClient, chat_world):
    response = client.get(f"/api/chat/workspace/{chat_world.workspace}/messages")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_workspace_chat_history_search_and_access(client: TestClient, chat_world):
    alice = auth_headers(chat_world.alice)
    bob = auth_headers(chat_world.bob)
    carol = auth_headers(chat_world.carol)
    base = f"/api/chat/workspace/{chat_world.workspace}"

    for content in ("Kickoff at noon", "Agenda attached", "noon works"):
        response = client.post(f"{base}/messages", json={"content": content}, headers=alice)
        assert response.status_code == 201, response.text

    sent = response.json()
    assert sent["sender"]["name"] == "Alice"
    assert sent["chat_type"] == "workspace"

    history = client.get(f"{base}/messages", params={"limit": 2}, headers=bob)
    assert history.status_code == 200
    page = history.json()
    assert [item["content"] for item in page["messages"]] == ["Agenda attached", "noon works"]
    assert page["has_more"] is True
    assert page["total"] == 3

    search = client.get(f"{base}/search", params={"q": "NOON"}, headers=bob)
    assert search.status_code == 200
    assert [item["content"] for item in search.json()] == ["noon works", "Kickoff at noon"]

    stats = client.get(f"{base}/stats", headers=bob)
    assert stats.status_code == 200
    assert stats.json() == {"total_messages": 3, "today_messages": 3, "active_users": 1}

    denied = client.get(f"{base}/messages", headers=carol)
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Access denied to workspace"

    denied_post = client.post(f"{base}/messages", json={"content": "hi"}, headers=carol)
    assert denied_post.status_code == 403


def test_send_rejects_invalid_content(client: TestClient, chat_world):
    alice = auth_headers(chat_world.alice)
    base = f"/api/chat/workspace/{chat_world.workspace}/messages"

    too_long = client.post(base, json={"content": "x" * 2001}, headers=alice)
    assert too_long.status_code == 400
    assert too_long.json()["detail"] == "Message too long (max 2000 characters)"

    blank = client.post(base, json={"content": "   "}, headers=alice)
    assert blank.status_code == 400
    assert blank.json()["detail"] == "Message content is required"


def test_project_chat_follows_workspace_membership(client: TestClient, chat_world):
    alice = auth_headers(chat_world.alice)
    carol = auth_headers(chat_world.carol)
    base = f"/api/chat/project/{chat_world.project}"

    created = client.post(f"{base}/messages", json={"content": "Launch checklist"}, headers=alice)
    assert created.status_code == 201
    assert created.json()["workspace_id"] == chat_world.workspace

    history = client.get(f"{base}/messages", headers=alice)
    assert [item["content"] for item in history.json()["messages"]] == ["Launch checklist"]

    found = client.get(f"{base}/search", params={"q": "check"}, headers=alice)
    assert len(found.json()) == 1

    assert client.get(f"{base}/messages", headers=carol).status_code == 403
    assert client.get("/api/chat/project/missing/messages", headers=alice).status_code == 403


def test_direct_messages_and_conversations(client: TestClient, chat_world):
    alice = auth_headers(chat_world.alice)
    bob = auth_headers(chat_world.bob)

    first = client.post(
        f"/api/chat/direct/{chat_world.bob}/messages", json={"content": "hey bob"}, headers=alice
    )
    assert first.status_code == 201
    assert first.json()["participants"] == sorted([chat_world.alice, chat_world.bob])

    reply = client.post(
        f"/api/chat/direct/{chat_world.alice}/messages",
        json={"content": "hey alice", "reply_to": first.json()["id"]},
        headers=bob,
    )
    assert reply.status_code == 201
    assert reply.json()["reply_to"]["content"] == "hey bob"

    history = client.get(f"/api/chat/direct/{chat_world.alice}/messages", headers=bob)
    assert [item["content"] for item in history.json()["messages"]] == ["hey bob", "hey alice"]

    conversations = client.get("/api/chat/direct/conversations", headers=alice)
    assert conversations.status_code == 200
    [conversation] = conversations.json()
    assert conversation["other_user"]["name"] == "Bob"
    assert conversation["last_message"]["content"] == "hey alice"
    assert conversation["unread_count"] == 1


def test_members_online_users_and_mark_read(client: TestClient, chat_world, session_factory):
    alice = auth_headers(chat_world.alice)
    base = f"/api/chat/workspace/{chat_world.workspace}"

    with session_factory() as session:
        session.get(User, chat_world.bob).is_online = True
        session.commit()

    members = client.get(f"{base}/members", headers=alice)
    assert members.status_code == 200
    assert {member["name"]: member["role"] for member in members.json()} == {
        "Alice": "owner",
        "Bob": "member",
    }

    online = client.get(f"{base}/online-users", headers=alice)
    assert [member["name"] for member in online.json()] == ["Bob"]
    assert online.json()[0]["is_online"] is True

    marked = client.post("/api/chat/messages/mark-read", json={"last_message_id": "m1"}, headers=alice)
    assert marked.status_code == 200
    assert marked.json() == {"status": True, "message": "Messages marked as read successfully!"}
    with session_factory() as session:
        assert session.get(User, chat_world.alice).last_seen is not None


def test_health_and_metrics_endpoints(client: TestClient):
    assert client.get("/health").json()["status"] == "ok"
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "realtime_active_connections" in metrics.text
