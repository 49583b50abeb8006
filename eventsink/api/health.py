"""
Health check endpoints - used by load balancers and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (database + batch accumulator)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from eventsink.api.events import get_gateway
from eventsink.services.persistence import PersistenceGateway

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    request: Request,
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """
    Readiness check - verifies database connectivity and reports how many
    events are waiting in the batch buffer.
    """
    database = await gateway.health_check()
    checks = {"database": database["status"] == "healthy"}

    batching = {"enabled": False}
    ingestion = getattr(request.app.state, "ingestion", None)
    if ingestion is not None and ingestion.accumulator is not None:
        accumulator = ingestion.accumulator
        batching = {
            "enabled": True,
            "state": accumulator.state,
            "buffered": len(accumulator),
            "consecutive_failures": accumulator.consecutive_failures,
        }

    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "batching": batching,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
