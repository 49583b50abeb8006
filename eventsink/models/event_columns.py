"""
Columns shared by the three canonical per-source event tables.
payload/headers are serialized JSON text and never updated after insert;
only status, error_message and processed_at change post-insert.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, Integer
from sqlalchemy.dialects.postgresql import UUID


class EventColumnsMixin:
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Not unique: re-delivering the same provider id yields a second row
    event_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    action = Column(String(100), nullable=True)

    payload = Column(Text, nullable=False)
    headers = Column(Text, nullable=True)
    signature = Column(String(255), nullable=True)
    delivery_id = Column(String(255), nullable=True)

    event_timestamp = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(50), nullable=False, default="pending", server_default="pending")
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
