"""
Webhook delivery log - one audit row per processing attempt, success or failure.
Written immediately at ingestion time, never batched.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID
from eventsink.database import Base


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    delivery_id = Column(String(255), nullable=False, index=True)
    webhook_source = Column(String(50), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    # Only set when the row also describes an outbound forward
    target_url = Column(String(500), nullable=True)

    request_headers = Column(Text, nullable=True)
    request_body = Column(Text, nullable=True)
    request_method = Column(String(10), nullable=False, default="POST", server_default="POST")

    response_status = Column(Integer, nullable=True)
    response_headers = Column(Text, nullable=True)
    response_body = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)

    status = Column(
        String(50), nullable=False, default="pending", server_default="pending", index=True
    )  # pending, delivered, failed, retrying
    attempt_count = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    error_message = Column(Text, nullable=True)
    error_code = Column(String(100), nullable=True)
