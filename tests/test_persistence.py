"""
Tests for eventsink/services/persistence.py - canonical, batch, delivery-log
and configuration writes against an in-memory database.
"""
import json
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from eventsink.database import Base
from eventsink.models import (
    GitHubEvent,
    LinearEvent,
    SlackEvent,
    WebhookConfiguration,
    WebhookDelivery,
)
from eventsink.services.normalization import normalize
from eventsink.services.persistence import PersistenceGateway, build_event_row
from eventsink.utils.errors import PersistenceError


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


def _failing_session_factory():
    """A session factory whose sessions cannot reach the database."""
    session = MagicMock()
    session.__aenter__.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    return MagicMock(return_value=session)


class TestInsertEvent:
    async def test_github_row_written(self, gateway, db, github_pr_payload, github_headers):
        record = normalize("github", github_pr_payload, github_headers, "sha256=abc")
        row_id = await gateway.insert_github_event(record)

        row = (await db.execute(select(GitHubEvent))).scalar_one()
        assert row.id == row_id
        assert row.event_id == "gh-delivery-0001"
        assert row.pull_request_number == 42
        assert row.repository_full_name == "org/repo"
        assert row.signature == "sha256=abc"
        assert row.status == "pending"

    async def test_payload_stored_as_serialized_text(self, gateway, db, github_pr_payload, github_headers):
        record = normalize("github", github_pr_payload, github_headers)
        await gateway.insert_event("github", record)

        row = (await db.execute(select(GitHubEvent))).scalar_one()
        assert isinstance(row.payload, str)
        assert json.loads(row.payload) == github_pr_payload
        assert json.loads(row.headers) == github_headers

    async def test_linear_and_slack_rows(self, gateway, db, linear_issue_payload, slack_message_payload):
        await gateway.insert_linear_event(normalize("linear", linear_issue_payload, {}))
        await gateway.insert_slack_event(normalize("slack", slack_message_payload, {}))

        linear = (await db.execute(select(LinearEvent))).scalar_one()
        slack = (await db.execute(select(SlackEvent))).scalar_one()
        assert linear.issue_identifier == "ENG-12"
        assert slack.channel_id == "C1"
        assert slack.message_text == "hi"

    async def test_same_event_id_inserted_twice(self, gateway, db, github_pr_payload, github_headers):
        """Re-delivering the same provider id produces a second row."""
        await gateway.insert_event("github", normalize("github", github_pr_payload, github_headers))
        await gateway.insert_event("github", normalize("github", github_pr_payload, github_headers))

        assert await _count(db, GitHubEvent) == 2

    async def test_record_for_wrong_table_rejected(self, gateway, slack_message_payload):
        record = normalize("slack", slack_message_payload, {})
        with pytest.raises(ValueError):
            await gateway.insert_event("github", record)

    async def test_storage_error_wrapped(self, github_pr_payload, github_headers):
        gateway = PersistenceGateway(_failing_session_factory())
        record = normalize("github", github_pr_payload, github_headers)

        with pytest.raises(PersistenceError) as exc_info:
            await gateway.insert_event("github", record)
        assert isinstance(exc_info.value.cause, OperationalError)


class TestInsertBatch:
    async def test_heterogeneous_batch_committed(
        self, gateway, db, github_pr_payload, github_headers, linear_issue_payload, slack_message_payload
    ):
        items = [
            ("github", normalize("github", github_pr_payload, github_headers)),
            ("linear", normalize("linear", linear_issue_payload, {})),
            ("slack", normalize("slack", slack_message_payload, {})),
            ("github", normalize("github", github_pr_payload, {"X-GitHub-Event": "pull_request"})),
        ]
        written = await gateway.insert_batch(items)

        assert written == 4
        assert await _count(db, GitHubEvent) == 2
        assert await _count(db, LinearEvent) == 1
        assert await _count(db, SlackEvent) == 1

    async def test_empty_batch_is_noop(self, gateway):
        assert await gateway.insert_batch([]) == 0

    async def test_batch_is_all_or_nothing(
        self, gateway, db, github_pr_payload, github_headers, slack_message_payload
    ):
        good = normalize("github", github_pr_payload, github_headers)
        bad = normalize("slack", slack_message_payload, {})
        bad.event_type = None  # violates NOT NULL at commit time

        with pytest.raises(PersistenceError):
            await gateway.insert_batch([("github", good), ("slack", bad)])

        assert await _count(db, GitHubEvent) == 0
        assert await _count(db, SlackEvent) == 0


class TestUpdateEventStatus:
    async def test_updates_mutable_columns(self, gateway, db, github_pr_payload, github_headers):
        record = normalize("github", github_pr_payload, github_headers)
        await gateway.insert_event("github", record)

        updated = await gateway.update_event_status("github", record.event_id, "failed", "downstream error")

        assert updated == 1
        row = (await db.execute(select(GitHubEvent))).scalar_one()
        await db.refresh(row)
        assert row.status == "failed"
        assert row.error_message == "downstream error"
        assert row.processed_at is not None
        assert json.loads(row.payload) == github_pr_payload

    async def test_unknown_event_id(self, gateway):
        assert await gateway.update_event_status("slack", "missing", "processed") == 0


class TestDeliveryAndConfiguration:
    async def test_insert_webhook_delivery(self, gateway, db):
        await gateway.insert_webhook_delivery(
            delivery_id="d-1",
            webhook_source="github",
            event_type="push",
            status="delivered",
            request_headers={"X-GitHub-Event": "push"},
            request_body={"ref": "refs/heads/main"},
        )

        row = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert row.delivery_id == "d-1"
        assert row.status == "delivered"
        assert row.request_method == "POST"
        assert row.target_url is None
        assert row.attempt_count == 1
        assert row.max_attempts == 3
        assert json.loads(row.request_body) == {"ref": "refs/heads/main"}

    async def test_insert_webhook_configuration(self, gateway, db):
        await gateway.insert_webhook_configuration(
            source="linear",
            webhook_url="https://hooks.example.com/linear",
            webhook_id="wh-1",
            events=["Issue", "Comment"],
            team_id="team-1",
        )

        row = (await db.execute(select(WebhookConfiguration))).scalar_one()
        assert row.source == "linear"
        assert json.loads(row.events) == ["Issue", "Comment"]
        assert row.active is True
        assert row.status == "active"


class TestDiagnostics:
    async def test_get_statistics(self, gateway, github_pr_payload, github_headers):
        await gateway.insert_event("github", normalize("github", github_pr_payload, github_headers))
        await gateway.insert_webhook_delivery(delivery_id="d", webhook_source="github", event_type="pull_request")

        stats = await gateway.get_statistics()

        assert stats == {
            "github_events": 1,
            "linear_events": 0,
            "slack_events": 0,
            "webhook_deliveries": 1,
            "webhook_configurations": 0,
        }

    async def test_health_check_healthy(self, gateway):
        result = await gateway.health_check()
        assert result["status"] == "healthy"
        assert result["database"] == "connected"

    async def test_health_check_unhealthy(self):
        result = await PersistenceGateway(_failing_session_factory()).health_check()
        assert result["status"] == "unhealthy"
        assert "connection refused" in result["error"]


def test_build_event_row_maps_record_fields(linear_issue_payload):
    row = build_event_row("linear", normalize("linear", linear_issue_payload, {}))
    assert isinstance(row, LinearEvent)
    assert row.team_name == "Engineering"
    assert row.id is not None


class TestConnectionRelease:
    @pytest.fixture
    async def single_connection_factory(self, tmp_path):
        """File-backed database behind a pool that holds exactly one connection."""
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'events.db'}",
            pool_size=1,
            max_overflow=0,
            pool_timeout=1,
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        await engine.dispose()

    async def test_failed_writes_return_their_connection(
        self, single_connection_factory, github_pr_payload, github_headers, slack_message_payload
    ):
        engine, factory = single_connection_factory
        gateway = PersistenceGateway(factory)

        for _ in range(3):
            bad = normalize("slack", slack_message_payload, {})
            bad.event_type = None
            with pytest.raises(PersistenceError):
                await gateway.insert_batch([("slack", bad)])
            with pytest.raises(PersistenceError):
                await gateway.insert_event("slack", bad)

        assert engine.pool.checkedout() == 0
        await gateway.insert_event("github", normalize("github", github_pr_payload, github_headers))
        stats = await gateway.get_statistics()
        assert stats["github_events"] == 1
        assert stats["slack_events"] == 0
        assert engine.pool.checkedout() == 0
