from datetime import datetime

import pytest

from medshare.app.infra.db import build_engine, create_schema, make_session_factory
from medshare.app.services.directory import UserDirectory

NOW = datetime(2024, 5, 1, 12, 0, 0)


class Clinic:
    """Seeds users, patients and clinical records through a session factory."""

    def __init__(self, factory) -> None:
        self.factory = factory

    def user(self, email: str) -> str:
        with self.factory() as session:
            return UserDirectory(session).register(email).id

    def patient(self, owner_id: str, last_name: str = "Doe") -> str:
        with self.factory() as session:
            return UserDirectory(session).register_patient(owner_id, "Jane", last_name).id

    def add(self, *records) -> None:
        with self.factory() as session:
            for record in records:
                session.add(record)


@pytest.fixture
def factory(tmp_path):
    # File-backed so worker threads see the same data through separate connections.
    engine = build_engine(f"sqlite:///{tmp_path / 'medshare.db'}")
    create_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clinic(factory):
    return Clinic(factory)
