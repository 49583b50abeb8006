"""
Registered webhook endpoints. Written once at setup time, read-only afterwards.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID
from eventsink.database import Base


class WebhookConfiguration(Base):
    __tablename__ = "webhook_configurations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source = Column(String(50), nullable=False, index=True)
    webhook_id = Column(String(255), nullable=True)
    webhook_url = Column(String(500), nullable=False)
    secret = Column(String(255), nullable=True)
    events = Column(Text, nullable=True)  # serialized list of subscribed event types
    active = Column(Boolean, nullable=False, default=True)

    repository_id = Column(String(255), nullable=True)
    repository_name = Column(String(255), nullable=True)
    team_id = Column(String(255), nullable=True)
    team_name = Column(String(255), nullable=True)

    status = Column(String(50), nullable=False, default="active", server_default="active")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
