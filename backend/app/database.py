from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings

settings = get_settings()

_engine_options: dict = {"echo": settings.debug, "future": True, "pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    # pool_size: number of connections to maintain persistently
    # max_overflow: additional connections that can be created on demand
    _engine_options.update(pool_size=10, max_overflow=20)
else:
    _engine_options["connect_args"] = {"check_same_thread": False}

engine = create_engine(settings.database_url, **_engine_options)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

SessionFactory = Callable[[], Session]


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    """Return the factory used for short-lived sessions outside request scope.

    Websocket handlers and concurrent aggregate queries open one session per
    store call instead of holding a request-scoped session for the lifetime
    of the connection.
    """
    return SessionLocal


@contextmanager
def get_db_session(factory: SessionFactory | None = None) -> Iterator[Session]:
    """Context manager for short-lived database sessions."""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
