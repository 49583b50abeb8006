"""
Persistence gateway - every write the pipeline makes goes through here.

Each operation checks one session (one pooled connection) out of the engine's
bounded pool and returns it on every exit path via `async with`. Storage
failures surface as PersistenceError so callers never see driver exceptions.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventsink.database import get_session_factory
from eventsink.models import (
    GitHubEvent,
    LinearEvent,
    SlackEvent,
    WebhookConfiguration,
    WebhookDelivery,
)
from eventsink.schemas.event_records import EventRecord, WebhookSource
from eventsink.utils.errors import PersistenceError
from eventsink.utils.metrics import Timer

logger = logging.getLogger(__name__)

EVENT_MODELS = {
    WebhookSource.GITHUB: GitHubEvent,
    WebhookSource.LINEAR: LinearEvent,
    WebhookSource.SLACK: SlackEvent,
}

# Errors raised by the driver or the pool, wrapped or not
STORAGE_ERRORS = (SQLAlchemyError, OSError)


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def build_event_row(source: WebhookSource | str, record: EventRecord):
    """Build the ORM row for a canonical record in its source's table."""
    source = WebhookSource(source)
    if record.source != source.value:
        raise ValueError(f"{record.source} record cannot be written to {source.value}_events")
    return EVENT_MODELS[source](id=uuid.uuid4(), **record.to_row())


class PersistenceGateway:
    """Writes canonical events, delivery-log rows and webhook configurations."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _commit(self, operation: str, rows: Sequence[Any]) -> None:
        """Add rows and commit them in one transaction; all or nothing."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add_all(rows)
        except STORAGE_ERRORS as e:
            raise PersistenceError(operation, e) from e

    # === Canonical events ===

    async def insert_event(self, source: WebhookSource | str, record: EventRecord) -> uuid.UUID:
        """Insert one canonical record in its own transaction. Returns the row id."""
        row = build_event_row(source, record)
        timer = Timer().start()
        await self._commit(f"insert {row.__tablename__}", [row])
        logger.debug(
            "Inserted %s row %s in %dms",
            row.__tablename__, str(row.id)[:8], timer.stop(),
            extra={"event_id": record.event_id},
        )
        return row.id

    async def insert_github_event(self, record: EventRecord) -> uuid.UUID:
        return await self.insert_event(WebhookSource.GITHUB, record)

    async def insert_linear_event(self, record: EventRecord) -> uuid.UUID:
        return await self.insert_event(WebhookSource.LINEAR, record)

    async def insert_slack_event(self, record: EventRecord) -> uuid.UUID:
        return await self.insert_event(WebhookSource.SLACK, record)

    async def insert_batch(self, items: Iterable[tuple[WebhookSource | str, EventRecord]]) -> int:
        """
        Write a heterogeneous batch inside a single transaction.
        Rows are added in arrival order, so per-table insert order matches it.
        Either every row commits or none does.
        """
        rows = [build_event_row(source, record) for source, record in items]
        if not rows:
            return 0
        timer = Timer().start()
        await self._commit("insert batch", rows)
        logger.info(
            "Committed batch of %d events in %dms",
            len(rows), timer.stop(),
            extra={"batch_size": len(rows)},
        )
        return len(rows)

    async def update_event_status(
        self,
        source: WebhookSource | str,
        event_id: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> int:
        """Update the mutable status columns of every row with this event id."""
        model = EVENT_MODELS[WebhookSource(source)]
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(model)
                        .where(model.event_id == event_id)
                        .values(
                            status=status,
                            error_message=error_message,
                            processed_at=datetime.now(timezone.utc),
                        )
                    )
        except STORAGE_ERRORS as e:
            raise PersistenceError(f"update {model.__tablename__} status", e) from e
        return result.rowcount

    # === Delivery log ===

    async def insert_webhook_delivery(
        self,
        delivery_id: str,
        webhook_source: str,
        event_type: str,
        status: str = "pending",
        target_url: Optional[str] = None,
        request_headers: Optional[dict] = None,
        request_body: Any = None,
        request_method: str = "POST",
        response_status: Optional[int] = None,
        response_headers: Optional[dict] = None,
        response_body: Optional[str] = None,
        response_time_ms: Optional[int] = None,
        attempt_count: int = 1,
        max_attempts: int = 3,
        next_retry_at: Optional[datetime] = None,
        delivered_at: Optional[datetime] = None,
        failed_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> uuid.UUID:
        row = WebhookDelivery(
            id=uuid.uuid4(),
            delivery_id=delivery_id,
            webhook_source=webhook_source,
            event_type=event_type,
            target_url=target_url,
            request_headers=_to_json(request_headers),
            request_body=_to_json(request_body),
            request_method=request_method,
            response_status=response_status,
            response_headers=_to_json(response_headers),
            response_body=response_body,
            response_time_ms=response_time_ms,
            status=status,
            attempt_count=attempt_count,
            max_attempts=max_attempts,
            next_retry_at=next_retry_at,
            delivered_at=delivered_at,
            failed_at=failed_at,
            error_message=error_message,
            error_code=error_code,
        )
        await self._commit("insert webhook_deliveries", [row])
        return row.id

    # === Webhook configurations ===

    async def insert_webhook_configuration(
        self,
        source: str,
        webhook_url: str,
        webhook_id: Optional[str] = None,
        secret: Optional[str] = None,
        events: Optional[list[str]] = None,
        active: bool = True,
        repository_id: Optional[str] = None,
        repository_name: Optional[str] = None,
        team_id: Optional[str] = None,
        team_name: Optional[str] = None,
        status: str = "active",
    ) -> uuid.UUID:
        row = WebhookConfiguration(
            id=uuid.uuid4(),
            source=WebhookSource(source).value,
            webhook_id=webhook_id,
            webhook_url=webhook_url,
            secret=secret,
            events=_to_json(events),
            active=active,
            repository_id=repository_id,
            repository_name=repository_name,
            team_id=team_id,
            team_name=team_name,
            status=status,
        )
        await self._commit("insert webhook_configurations", [row])
        return row.id

    # === Diagnostics ===

    async def get_statistics(self) -> dict[str, int]:
        """Row counts for every table the pipeline owns."""
        tables = {
            "github_events": GitHubEvent,
            "linear_events": LinearEvent,
            "slack_events": SlackEvent,
            "webhook_deliveries": WebhookDelivery,
            "webhook_configurations": WebhookConfiguration,
        }
        stats: dict[str, int] = {}
        try:
            async with self.session_factory() as session:
                for name, model in tables.items():
                    result = await session.execute(select(func.count()).select_from(model))
                    stats[name] = int(result.scalar_one())
        except STORAGE_ERRORS as e:
            raise PersistenceError("read statistics", e) from e
        return stats

    async def health_check(self) -> dict:
        try:
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT CURRENT_TIMESTAMP"))
                timestamp = result.scalar_one()
        except STORAGE_ERRORS as e:
            logger.error("Database health check failed: %s", str(e))
            return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
        return {"status": "healthy", "database": "connected", "timestamp": str(timestamp)}
