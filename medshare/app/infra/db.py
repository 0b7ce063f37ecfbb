"""Database session utilities."""
from contextlib import contextmanager
import logging
import os
import time
from typing import Callable, ContextManager, Iterator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, Session

# Import for side effects: registers every table on SQLModel.metadata.
from ..domain import models  # noqa: F401

load_dotenv()

logger = logging.getLogger(__name__)

# Read DATABASE_URL from environment; fall back to a local SQLite file
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medshare.db")

SessionFactory = Callable[[], ContextManager[Session]]


def build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, future=True, connect_args=connect_args)


engine = build_engine(DATABASE_URL)


def make_session_factory(bind_engine: Engine) -> SessionFactory:
    """Return a ``get_session``-style context manager bound to ``bind_engine``.

    Each call opens its own session, so factories are safe to share across
    worker threads.
    """
    session_local = sessionmaker(
        bind=bind_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        class_=Session,
    )

    @contextmanager
    def session_scope() -> Iterator[Session]:
        session = session_local()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


get_session = make_session_factory(engine)


def create_schema(bind_engine: Engine) -> None:
    SQLModel.metadata.create_all(bind_engine)


def init_db() -> None:
    """Create tables if they do not exist.

    Retries on startup to wait for the database service in Docker.
    """
    attempts = 0
    last_err: Exception | None = None
    while attempts < 30:
        try:
            create_schema(engine)
            return
        except Exception as exc:  # pragma: no cover
            last_err = exc
            attempts += 1
            logger.warning("waiting for database... (%s/30) %s", attempts, exc)
            time.sleep(1)
    if last_err:
        raise last_err
