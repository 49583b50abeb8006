"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from eventsink.api.events import router as events_router
from eventsink.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(events_router)
api_router.include_router(health_router)
