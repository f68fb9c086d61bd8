"""
conftest.py — Shared Test Fixtures for CalRouter

Provides an in-memory SQLite database, a FastAPI TestClient with the
database, rate limiter and notifier overridden, and factory fixtures for
users, endpoints and delivery log rows.

Business Rules:
- All tests run against an isolated in-memory DB (no prod data risk)
- The rate limiter uses in-memory storage, fresh per test
- Emails never leave the process: the notifier is an AsyncMock
- Each test function gets fresh tables

Called by: all test files via pytest autodiscovery
Depends on: calrouter.models (Base), calrouter.database (get_db)
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing calrouter modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["ENABLE_EMAILS"] = "false"

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from calrouter.models import Base, DeliveryLog, Endpoint, User
from calrouter.models.delivery import STATUS_FAILED, STATUS_SUCCESS
from calrouter.rate_limit import RateLimiter
from calrouter.services.notification_service import EmailNotifier

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture()
def make_user(db_session: Session):
    """Factory: make_user(email=..., subscription_status=..., trial_ends_at=...)."""

    def _make(**kwargs) -> User:
        kwargs.setdefault("email", "owner@example.com")
        kwargs.setdefault("subscription_status", "active")
        user = User(**kwargs)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_endpoint(db_session: Session):
    """Factory: make_endpoint(user, name=..., destination_url=..., ...)."""

    def _make(user: User, **kwargs) -> Endpoint:
        kwargs.setdefault("name", "Zapier CRM hook")
        kwargs.setdefault("destination_url", "https://hooks.example.com/calendly")
        ep = Endpoint(user_id=user.id, **kwargs)
        db_session.add(ep)
        db_session.commit()
        db_session.refresh(ep)
        return ep

    return _make


@pytest.fixture()
def make_log(db_session: Session):
    """Factory: make_log(endpoint, status="failed", created_at=..., ...)."""
    counter = {"n": 0}

    def _make(endpoint: Endpoint, status: str = STATUS_SUCCESS, **kwargs) -> DeliveryLog:
        counter["n"] += 1
        kwargs.setdefault("calendly_event_uuid", f"evt-{counter['n']}")
        kwargs.setdefault("event_type", "invitee.created")
        if status == STATUS_FAILED:
            kwargs.setdefault("error_message", "Destination returned 500")
        entry = DeliveryLog(endpoint_id=endpoint.id, status=status, **kwargs)
        db_session.add(entry)
        db_session.commit()
        return entry

    return _make


@pytest.fixture()
def test_user(make_user) -> User:
    """An active subscriber."""
    return make_user(email="owner@example.com", subscription_status="active")


@pytest.fixture()
def test_endpoint(make_endpoint, test_user: User) -> Endpoint:
    return make_endpoint(test_user)


@pytest.fixture()
def trial_user(make_user, now: datetime) -> User:
    """A trial user with 10 days left."""
    return make_user(
        email="trial@example.com",
        subscription_status="trial",
        trial_ends_at=now + timedelta(days=10),
    )


@pytest.fixture()
def rate_limiter() -> RateLimiter:
    limiter = RateLimiter(limit="100/minute", storage_uri="memory://")
    yield limiter
    limiter.reset()


@pytest.fixture()
def notifier() -> EmailNotifier:
    """EmailNotifier double: every send_* is an AsyncMock."""
    mock = MagicMock(spec=EmailNotifier)
    mock.send_trial_ending = AsyncMock()
    mock.send_trial_expired = AsyncMock()
    mock.send_webhook_failure = AsyncMock()
    return mock


@pytest.fixture()
def no_retry_delay(monkeypatch):
    """Skip the 1s backoff between notification attempts."""
    monkeypatch.setattr("calrouter.services.reconciliation.EMAIL_RETRY_DELAY_SECONDS", 0)


@pytest.fixture()
def client(db_session: Session, rate_limiter: RateLimiter, notifier) -> TestClient:
    """FastAPI TestClient with DB, rate limiter and notifier overridden."""
    from calrouter.database import get_db
    from calrouter.main import app
    from calrouter.rate_limit import get_rate_limiter
    from calrouter.services.notification_service import get_notifier

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
