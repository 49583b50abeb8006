"""
Read path across the three canonical event tables.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import case, func, literal_column, select, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from eventsink.models import GitHubEvent, LinearEvent, SlackEvent
from eventsink.schemas.event_records import EventStatus, WebhookSource
from eventsink.utils.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_SUMMARY_DAYS = 7


def _source_label(source: WebhookSource):
    return literal_column(f"'{source.value}'").label("source")


# identifier / actor column expressions per table
_LISTING_COLUMNS = {
    WebhookSource.GITHUB: (
        GitHubEvent,
        GitHubEvent.repository_full_name,
        GitHubEvent.sender_login,
    ),
    WebhookSource.LINEAR: (
        LinearEvent,
        func.coalesce(LinearEvent.issue_identifier, LinearEvent.team_name),
        LinearEvent.creator_name,
    ),
    WebhookSource.SLACK: (
        SlackEvent,
        func.coalesce(SlackEvent.channel_name, SlackEvent.channel_id),
        func.coalesce(SlackEvent.user_name, SlackEvent.user_id),
    ),
}


def _listing_select(
    source: WebhookSource,
    event_type: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    status: Optional[str],
):
    model, identifier, actor = _LISTING_COLUMNS[source]
    stmt = select(
        _source_label(source),
        model.event_type.label("event_type"),
        identifier.label("identifier"),
        actor.label("actor"),
        model.received_at.label("received_at"),
        model.status.label("status"),
        model.payload.label("payload"),
    )
    if event_type:
        stmt = stmt.where(model.event_type == event_type)
    if start_date:
        stmt = stmt.where(model.received_at >= start_date)
    if end_date:
        stmt = stmt.where(model.received_at <= end_date)
    if status:
        stmt = stmt.where(model.status == status)
    return stmt


def _decode_payload(raw: Optional[str]):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


async def list_events(
    db: AsyncSession,
    source: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status: Optional[str] = None,
) -> list[dict]:
    """
    List events across sources, newest first.

    Every selected table is filtered by the same predicates, then the union is
    ordered by received_at and paginated as a whole (not per table).
    """
    sources = [WebhookSource(source)] if source else list(WebhookSource)
    selects = [
        _listing_select(s, event_type, start_date, end_date, status) for s in sources
    ]
    events = (union_all(*selects) if len(selects) > 1 else selects[0]).subquery("events")

    stmt = (
        select(events)
        .order_by(events.c.received_at.desc())
        .limit(limit)
        .offset(offset)
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise PersistenceError("list events", e) from e

    return [
        {
            "source": row.source,
            "event_type": row.event_type,
            "identifier": row.identifier,
            "actor": row.actor,
            "received_at": row.received_at,
            "status": row.status,
            "payload": _decode_payload(row.payload),
        }
        for row in result.all()
    ]


async def summarize_events(db: AsyncSession, days: int = DEFAULT_SUMMARY_DAYS) -> list[dict]:
    """
    Daily totals per (source, event_type) over the trailing `days` window,
    ordered by day descending, then source, then event type.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    parts = [
        select(
            _source_label(source),
            model.event_type.label("event_type"),
            model.received_at.label("received_at"),
            model.status.label("status"),
        ).where(model.received_at > cutoff)
        for source, (model, _, _) in _LISTING_COLUMNS.items()
    ]
    events = union_all(*parts).subquery("events")

    day = func.date(events.c.received_at)
    stmt = (
        select(
            day.label("date"),
            events.c.source,
            events.c.event_type,
            func.count().label("total_events"),
            func.sum(case((events.c.status == EventStatus.PROCESSED.value, 1), else_=0)).label("successful_events"),
            func.sum(case((events.c.status == EventStatus.FAILED.value, 1), else_=0)).label("failed_events"),
        )
        .group_by(day, events.c.source, events.c.event_type)
        .order_by(day.desc(), events.c.source, events.c.event_type)
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise PersistenceError("summarize events", e) from e

    return [
        {
            "date": str(row.date),
            "source": row.source,
            "event_type": row.event_type,
            "total_events": int(row.total_events),
            "successful_events": int(row.successful_events or 0),
            "failed_events": int(row.failed_events or 0),
        }
        for row in result.all()
    ]
