"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. StaticPool keeps one shared connection so
every session the gateway opens sees the same database.
"""
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import eventsink.models  # noqa: F401  (registers tables on Base.metadata)
from eventsink.database import Base
from eventsink.services.persistence import PersistenceGateway


@pytest.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """A session on the in-memory database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway(session_factory):
    """PersistenceGateway writing to the in-memory database."""
    return PersistenceGateway(session_factory)


@pytest.fixture
def github_pr_payload():
    return {
        "action": "opened",
        "pull_request": {"number": 42, "title": "Fix bug", "state": "open"},
        "repository": {"name": "repo", "full_name": "org/repo", "id": 1},
        "sender": {"login": "alice", "id": 9},
    }


@pytest.fixture
def github_headers():
    return {
        "X-GitHub-Event": "pull_request",
        "X-GitHub-Delivery": "gh-delivery-0001",
        "Content-Type": "application/json",
    }


@pytest.fixture
def linear_issue_payload():
    return {
        "action": "create",
        "type": "Issue",
        "createdAt": "2024-03-01T12:30:00.000Z",
        "webhookId": "lin-webhook-1",
        "data": {
            "id": "issue-uuid-1",
            "identifier": "ENG-12",
            "title": "Crash on save",
            "priority": 2,
            "state": {"name": "Todo"},
            "team": {"id": "team-1", "name": "Engineering"},
            "project": {"id": "proj-1", "name": "Editor"},
            "assignee": {"id": "user-2", "name": "Bob"},
            "creator": {"id": "user-1", "name": "Alice"},
        },
    }


@pytest.fixture
def slack_message_payload():
    return {
        "type": "event_callback",
        "event_id": "Ev0001",
        "team_id": "T1",
        "event": {
            "type": "message",
            "channel": "C1",
            "user": "U1",
            "text": "hi",
            "ts": "1690000000.000100",
            "channel_type": "channel",
        },
    }
