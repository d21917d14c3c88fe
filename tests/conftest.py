"""
Pytest fixtures for the color game. Each test gets a fresh temporary SQLite DB.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from decimal import Decimal

# Keep the app from touching a real DB or starting the scheduler on import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SEED_DEMO_USERS", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base, get_db
from models import UserRole
from core.events import EventSink
from core.ledger import LedgerManager
from core.round_manager import RoundManager
from core.settlement import SettlementEngine
from services.outcome_service import SequenceOutcomeSource

START = datetime(2026, 1, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingSink(EventSink):
    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'color_game.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_user(db):
    def _make(username="alice", balance=Decimal("1000"), role=UserRole.USER):
        return LedgerManager.create_user(db, username, Decimal(balance), role=role)
    return _make


@pytest.fixture
def open_round(db, clock):
    round_obj, _ = RoundManager.open_round(db, clock(), 60)
    return round_obj


@pytest.fixture
def make_engine(session_factory, sink, clock):
    def _make(*colors):
        return SettlementEngine(
            session_factory,
            outcome_source=SequenceOutcomeSource(colors or ("green",)),
            events=sink,
            clock=clock,
        )
    return _make


@pytest.fixture
def client(session_factory):
    """FastAPI TestClient wired to the temp DB. Lifespan is not run, so no scheduler."""
    from fastapi.testclient import TestClient

    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
