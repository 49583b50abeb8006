"""
Tests for eventsink/services/delivery_tracker.py - delivery audit rows.
"""
import json
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import select

from eventsink.models import WebhookDelivery
from eventsink.schemas.event_records import DeliveryStatus
from eventsink.services.delivery_tracker import DeliveryTracker


class TestLogAttempt:
    async def test_delivered_row(self, gateway, db):
        tracker = DeliveryTracker(gateway)

        ok = await tracker.log_attempt(
            delivery_id="gh-delivery-0001",
            source="github",
            event_type="pull_request",
            outcome=DeliveryStatus.DELIVERED,
            request_headers={"X-GitHub-Event": "pull_request"},
            request_body={"action": "opened"},
        )

        assert ok is True
        row = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert row.webhook_source == "github"
        assert row.event_type == "pull_request"
        assert row.status == "delivered"
        assert row.delivered_at is not None
        assert row.failed_at is None
        assert row.error_message is None
        assert json.loads(row.request_body) == {"action": "opened"}

    async def test_failed_row_carries_error(self, gateway, db):
        tracker = DeliveryTracker(gateway)

        await tracker.log_attempt(
            delivery_id="Ev0001",
            source="slack",
            event_type="message",
            outcome="failed",
            error_message="insert failed: disk full",
            error_code="PersistenceError",
        )

        row = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert row.status == "failed"
        assert row.failed_at is not None
        assert row.delivered_at is None
        assert row.error_message == "insert failed: disk full"
        assert row.error_code == "PersistenceError"

    async def test_missing_event_type_recorded_as_unknown(self, gateway, db):
        await DeliveryTracker(gateway).log_attempt("d-1", "linear", None, "failed")

        row = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert row.event_type == "unknown"

    async def test_write_failure_is_swallowed(self, caplog):
        gateway = MagicMock()
        gateway.insert_webhook_delivery = AsyncMock(side_effect=RuntimeError("db down"))
        tracker = DeliveryTracker(gateway)

        ok = await tracker.log_attempt("d-2", "github", "push", "delivered")

        assert ok is False
        assert "Failed to log webhook delivery" in caplog.text
        assert "db down" in caplog.text
