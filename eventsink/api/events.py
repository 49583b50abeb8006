"""
Event query endpoints - read-only views over the canonical event tables.

- GET /api/v1/events          - paginated union listing, newest first
- GET /api/v1/events/summary  - daily counts per source and event type
- GET /api/v1/events/stats    - row counts per table
"""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from eventsink.database import get_db
from eventsink.schemas.api_responses import EventListItem, EventStatistics, EventSummaryRow
from eventsink.services.event_queries import list_events, summarize_events
from eventsink.services.persistence import PersistenceGateway
from eventsink.utils.errors import PersistenceError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/events", tags=["events"])


def get_gateway(request: Request) -> PersistenceGateway:
    """The gateway owned by the running application (a default one before startup)."""
    ingestion = getattr(request.app.state, "ingestion", None)
    if ingestion is None:
        return PersistenceGateway()
    return ingestion.gateway


@router.get("", response_model=list[EventListItem])
async def get_events(
    source: Optional[str] = Query(default=None, pattern="^(github|linear|slack)$"),
    type: Optional[str] = Query(default=None, max_length=100),
    status: Optional[str] = Query(default=None, pattern="^(pending|processed|failed)$"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
):
    """List events across all sources, newest first."""
    try:
        return await list_events(
            db,
            source=source,
            event_type=type,
            limit=limit,
            offset=offset,
            start_date=start_date,
            end_date=end_date,
            status=status,
        )
    except PersistenceError as e:
        logger.error("Failed to retrieve events: %s", str(e))
        raise HTTPException(status_code=503, detail="Failed to retrieve events")


@router.get("/summary", response_model=list[EventSummaryRow])
async def get_event_summary(
    days: int = Query(default=7, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Per-day event counts for the trailing window."""
    try:
        return await summarize_events(db, days)
    except PersistenceError as e:
        logger.error("Failed to retrieve event summary: %s", str(e))
        raise HTTPException(status_code=503, detail="Failed to retrieve event summary")


@router.get("/stats", response_model=EventStatistics)
async def get_event_statistics(gateway: PersistenceGateway = Depends(get_gateway)):
    """Row counts for every pipeline table."""
    try:
        return await gateway.get_statistics()
    except PersistenceError as e:
        logger.error("Failed to retrieve statistics: %s", str(e))
        raise HTTPException(status_code=503, detail="Failed to retrieve statistics")
