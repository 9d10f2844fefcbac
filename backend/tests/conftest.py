"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.core import security
from app.database import get_db, get_session_factory
from app.main import app
from app.models import Base, Member, Project, User, Workspace, WorkspaceRole

security.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine(tmp_path) -> Iterator[Engine]:
    """Provide a file-backed SQLite engine usable from worker threads."""

    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'huddle-test.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependencies overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def chat_world(session_factory) -> SimpleNamespace:
    """Seed two workspace members, one outsider, a workspace and a project."""

    with session_factory() as session:
        alice = User(email="alice@example.com", name="Alice", hashed_password="hashed")
        bob = User(email="bob@example.com", name="Bob", hashed_password="hashed")
        carol = User(email="carol@example.com", name="Carol", hashed_password="hashed")
        session.add_all([alice, bob, carol])
        session.flush()

        workspace = Workspace(name="Acme", owner_id=alice.id)
        other_workspace = Workspace(name="Elsewhere", owner_id=carol.id)
        session.add_all([workspace, other_workspace])
        session.flush()

        project = Project(name="Launch", workspace_id=workspace.id)
        session.add(project)
        session.add_all(
            [
                Member(user_id=alice.id, workspace_id=workspace.id, role=WorkspaceRole.OWNER),
                Member(user_id=bob.id, workspace_id=workspace.id, role=WorkspaceRole.MEMBER),
                Member(user_id=carol.id, workspace_id=other_workspace.id, role=WorkspaceRole.OWNER),
            ]
        )
        alice.current_workspace_id = workspace.id
        bob.current_workspace_id = workspace.id
        carol.current_workspace_id = other_workspace.id
        session.commit()

        return SimpleNamespace(
            alice=alice.id,
            bob=bob.id,
            carol=carol.id,
            workspace=workspace.id,
            other_workspace=other_workspace.id,
            project=project.id,
        )
