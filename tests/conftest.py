"""Pytest fixtures for helpdesk-history-import tests."""

import os
import pathlib
from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest
from sqlalchemy import text


def pytest_configure(config: pytest.Config) -> None:
    """Load .env from project root so DATABASE_URL is set for integration tests."""
    try:
        from dotenv import load_dotenv

        root = pathlib.Path(__file__).resolve().parent.parent
        load_dotenv(root / ".env")
    except ImportError:
        pass


def result(rows=None, scalars=None, rowcount=None, scalar=None):
    """Stand-in for a SQLAlchemy Result."""
    r = MagicMock()
    r.all.return_value = rows or []
    r.first.return_value = (rows or [None])[0]
    r.scalars.return_value = scalars or []
    r.rowcount = rowcount
    r.scalar_one.return_value = scalar
    r.scalar_one_or_none.return_value = scalar
    return r


@pytest.fixture
def mock_db():
    """Session double: begin_nested() works as a context manager, execute() is configured per test."""
    return MagicMock()


@pytest.fixture
def fake_session_factory(mock_db):
    @contextmanager
    def factory():
        yield mock_db

    return factory


@pytest.fixture
def pg_engine():
    """Engine on DATABASE_URL with the helpdesk tables created and emptied. Skip if DATABASE_URL not set."""
    if not os.environ.get("DATABASE_URL"):
        pytest.skip("DATABASE_URL not set")
    from helpdesk.database import engine
    from helpdesk.models import Base

    if engine is None:
        pytest.skip("DATABASE_URL not picked up by settings")
    Base.metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(
            text(
                "TRUNCATE taggings, tags, labels, messages, conversations, contacts,"
                " account_users, users RESTART IDENTITY CASCADE"
            )
        )
    return engine


@pytest.fixture
def admin_user(pg_engine):
    """Administrator of account 1; imported outgoing messages are attributed to them."""
    with pg_engine.begin() as conn:
        user_id = conn.execute(
            text("INSERT INTO users (email, name, type) VALUES ('admin@example.com', 'Admin', 'User') RETURNING id")
        ).scalar_one()
        conn.execute(
            text("INSERT INTO account_users (account_id, user_id, role) VALUES (1, :user_id, 1)"),
            {"user_id": user_id},
        )
    return user_id
