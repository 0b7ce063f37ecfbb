"""Dependency injection utilities."""
from collections.abc import Generator
from datetime import datetime

from fastapi import Depends
from sqlmodel import Session

from .domain.clock import utcnow
from .infra.db import SessionFactory, get_session


def session_factory() -> SessionFactory:
    """Session factory used by services that open their own sessions."""
    return get_session


def db_session(factory: SessionFactory = Depends(session_factory)) -> Generator[Session, None, None]:
    """Provide a scoped DB session to FastAPI endpoints."""
    with factory() as session:
        yield session


def request_now() -> datetime:
    """The single "now" every decision in one request is made against."""
    return utcnow()
