"""
Response models for the read API.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class EventListItem(BaseModel):
    source: str
    event_type: str
    identifier: Optional[str] = None
    actor: Optional[str] = None
    received_at: datetime
    status: str
    payload: Any = None


class EventSummaryRow(BaseModel):
    date: str
    source: str
    event_type: str
    total_events: int
    successful_events: int
    failed_events: int


class EventStatistics(BaseModel):
    github_events: int
    linear_events: int
    slack_events: int
    webhook_deliveries: int
    webhook_configurations: int
