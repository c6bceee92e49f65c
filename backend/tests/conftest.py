# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Settings are read at import time, so the test environment is pinned BEFORE
any tutorbook import: in-memory SQLite, in-process tutor locks only.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCK_BACKEND"] = "local"
os.environ.pop("STRIPE_SECRET_KEY", None)

import pytest
from sqlalchemy.orm import sessionmaker

from tests._utils.builders import NOW, create_tutor
from tests._utils.fakes import FakePaymentGateway, RecordingDispatcher
from tutorbook.core.clock import FixedClock
from tutorbook.core.tutor_lock import reset_tutor_locks
from tutorbook.core.ulid_helper import generate_ulid
from tutorbook.database import Base, build_engine
from tutorbook.models import Tutor
from tutorbook.services.notification_service import NotificationService


@pytest.fixture(autouse=True)
def _fresh_locks():
    reset_tutor_locks()
    yield
    reset_tutor_locks()


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://")
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def notifier(dispatcher) -> NotificationService:
    return NotificationService(dispatcher=dispatcher)


@pytest.fixture
def tutor(db) -> Tutor:
    return create_tutor(db)


@pytest.fixture
def student_id() -> str:
    return generate_ulid()
