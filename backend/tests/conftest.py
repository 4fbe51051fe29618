"""Pytest configuration and shared fixtures.

Tests run against in-memory SQLite. Channel senders are replaced with fakes so
nothing leaves the process; push/email transport tests use httpx.MockTransport.
"""
import os

# Must be set before homebase_notify.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SERVICE_ROLE_KEY", "test-service-key")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")

from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import homebase_notify.models  # noqa: F401
from homebase_notify.core.errors import DeliveryError
from homebase_notify.core.types import Channel
from homebase_notify.db.base import Base
from homebase_notify.db.session import get_db
from homebase_notify.models.profile import Profile
from homebase_notify.services.channels.base import SendResult
from homebase_notify.services.realtime import ConversationHub

# Noon UTC on a weekday; outside any quiet hours window used in tests unless stated
NOON = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


class FakeSender:
    """Records every outbox row it is asked to deliver; fails while `fail` is set."""

    def __init__(self, channel: Channel, fail: bool = False):
        self.channel = channel
        self.fail = fail
        self.calls: list[int] = []

    def send(self, db, entry) -> SendResult:
        self.calls.append(entry.id)
        if self.fail:
            raise DeliveryError(f"{self.channel.value} provider down")
        return SendResult(provider_id=f"{self.channel.value}-{entry.id}")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def senders() -> dict[Channel, FakeSender]:
    return {ch: FakeSender(ch) for ch in Channel}


@pytest.fixture
def hub() -> ConversationHub:
    return ConversationHub()


@pytest.fixture
def make_profile(db):
    counter = {"n": 0}

    def _make(role: str = "homeowner", email: str | None = None, full_name: str | None = None) -> Profile:
        counter["n"] += 1
        n = counter["n"]
        profile = Profile(
            user_id=f"user-{n}",
            role=role,
            email=email if email is not None else f"user{n}@example.com",
            full_name=full_name or f"User {n}",
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile

    return _make


@pytest.fixture
def client(session_factory, senders, monkeypatch) -> Generator[TestClient, None, None]:
    """App client on the test database with fake senders registered."""
    from homebase_notify.main import app
    from homebase_notify.services.channels import registry

    for ch, sender in senders.items():
        monkeypatch.setitem(registry._senders, ch, sender)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: lifespan (scheduler) is not started in tests
    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
