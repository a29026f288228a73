"""Shared test fixtures."""

import os
import tempfile
import uuid
from datetime import UTC, datetime, timedelta

# Keep module-level engine and webhook logs away from real paths
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("WEBHOOK_LOG_DIR", tempfile.mkdtemp(prefix="review-mailer-webhooks-"))

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from review_mailer.audit.models import AuditLog  # noqa: E402
from review_mailer.auth.models import User  # noqa: E402
from review_mailer.database.base import Base  # noqa: E402
from review_mailer.queue.models import ReviewJob  # noqa: E402

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [AuditLog, User, ReviewJob]

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class FakeSender:
    """Mail sender double that records calls and returns scripted outcomes."""

    def __init__(self, outcome=True, fail_for=()):
        self.outcome = outcome
        self.fail_for = set(fail_for)
        self.calls = []

    def send_review_email(self, to_email, to_name, job_id, is_reminder=False):
        self.calls.append({"to_email": to_email, "to_name": to_name, "job_id": job_id, "is_reminder": is_reminder})
        if to_email in self.fail_for:
            raise RuntimeError(f"provider timeout for {to_email}")
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_user(db_session):
    """Create a test admin user."""
    user = User(
        id=uuid.uuid4(),
        email="test@example.com",
        password_hash="$2b$12$fakehash",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def make_job(db_session):
    """Factory inserting a ReviewJob row with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> ReviewJob:
        counter["n"] += 1
        created_at = overrides.pop("created_at", NOW - timedelta(days=20))
        values = {
            "order_id": f"O{counter['n']}",
            "email": f"buyer{counter['n']}@example.com",
            "name": f"Buyer {counter['n']}",
            "created_at": created_at,
            "send_after": created_at + timedelta(days=14),
            "canceled": False,
            "has_interaction": False,
            "reminder_count": 0,
        }
        values.update(overrides)
        job = ReviewJob(**values)
        db_session.add(job)
        db_session.commit()
        return job

    return _make


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def sender_factory():
    return FakeSender
