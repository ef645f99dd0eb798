"""Root conftest: shared fixtures for all relay tests."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

# Ensure backend/ is on sys.path
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
import models  # noqa: F401  (registers all models with Base)

# In-memory SQLite for tests; StaticPool ensures all connections share the same DB
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = sessionmaker(bind=TEST_ENGINE, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db():
    """Yield a test database session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


def nonclosing_session(db):
    """A mock SessionLocal instance that wraps db but whose close() is a no-op."""
    mock_session = MagicMock(wraps=db)
    mock_session.close = MagicMock()  # no-op close so test session stays open
    return mock_session


@pytest.fixture
def patch_session(db):
    """Patch database.SessionLocal so code that opens its own session uses db."""
    with patch("database.SessionLocal", return_value=nonclosing_session(db)):
        yield db


@pytest.fixture
def events():
    """List of (channel, event_type, data) tuples captured by ``publisher``."""
    return []


@pytest.fixture
def publisher(events):
    from services.events import EventPublisher

    return EventPublisher(send=lambda channel, event_type, data: events.append((channel, event_type, data)))


@pytest.fixture
def conversation(db):
    from models.conversation import Conversation

    conv = Conversation(user_id=1, title="Test Conversation", provider="ollama", model="llama3.2")
    db.add(conv)
    db.commit()
    db.refresh(conv)
    return conv


@pytest.fixture
def make_query(db):
    """Factory for LLMQuery rows: ``make_query(status="running", conversation_id=...)``."""
    from models.query import LLMQuery

    def _make(**overrides):
        fields = {
            "user_id": 1,
            "provider": "ollama",
            "model": "llama3.2",
            "prompt": "Hello there",
            "status": "pending",
            "metadata_": {"options": {}},
        }
        fields.update(overrides)
        query = LLMQuery(**fields)
        db.add(query)
        db.commit()
        db.refresh(query)
        return query

    return _make
