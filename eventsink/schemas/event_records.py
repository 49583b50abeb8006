"""
Canonical event records - the fixed-schema form every provider payload is
normalized into before it is persisted.

The three variants form a tagged union discriminated on `source`; each maps
one-to-one onto its per-source table.
"""
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, Field


class WebhookSource(str, Enum):
    GITHUB = "github"
    LINEAR = "linear"
    SLACK = "slack"


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"  # reserved for an external retry driver


class EventRecord(BaseModel):
    """Fields shared by every canonical record."""
    event_id: str
    event_type: str
    action: Optional[str] = None
    payload: dict[str, Any]
    headers: dict[str, Any] = Field(default_factory=dict)
    signature: Optional[str] = None
    delivery_id: Optional[str] = None
    event_timestamp: datetime
    status: EventStatus = EventStatus.PENDING
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    # Assigned at normalization so batched rows keep their arrival time
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def event_timestamp_ms(self) -> int:
        return int(self.event_timestamp.timestamp() * 1000)

    def mark_processed(self) -> None:
        self.status = EventStatus.PROCESSED
        self.processed_at = datetime.now(timezone.utc)

    def to_row(self) -> dict[str, Any]:
        """Column values for the source table. JSON blobs become serialized text."""
        row = self.model_dump(exclude={"source"})
        row["payload"] = json.dumps(self.payload, default=str)
        row["headers"] = json.dumps(self.headers, default=str)
        row["status"] = self.status.value
        return row


class GitHubEventRecord(EventRecord):
    source: Literal["github"] = "github"

    repository_name: Optional[str] = None
    repository_full_name: Optional[str] = None
    repository_id: Optional[int] = None
    sender_login: Optional[str] = None
    sender_id: Optional[int] = None
    organization: Optional[str] = None

    pull_request_number: Optional[int] = None
    pull_request_title: Optional[str] = None
    pull_request_state: Optional[str] = None
    issue_number: Optional[int] = None
    issue_title: Optional[str] = None
    issue_state: Optional[str] = None
    commit_sha: Optional[str] = None
    commit_message: Optional[str] = None
    branch_name: Optional[str] = None
    tag_name: Optional[str] = None


class LinearEventRecord(EventRecord):
    source: Literal["linear"] = "linear"

    team_id: Optional[str] = None
    team_name: Optional[str] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    issue_id: Optional[str] = None
    issue_identifier: Optional[str] = None
    issue_title: Optional[str] = None
    issue_state: Optional[str] = None
    issue_priority: Optional[int] = None
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    creator_id: Optional[str] = None
    creator_name: Optional[str] = None
    comment_id: Optional[str] = None
    comment_body: Optional[str] = None


class SlackEventRecord(EventRecord):
    source: Literal["slack"] = "slack"

    event_subtype: Optional[str] = None
    team_id: Optional[str] = None
    team_domain: Optional[str] = None
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    channel_type: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    bot_id: Optional[str] = None
    message_text: Optional[str] = None
    message_ts: Optional[str] = None
    thread_ts: Optional[str] = None
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None


AnyEventRecord = Annotated[
    Union[GitHubEventRecord, LinearEventRecord, SlackEventRecord],
    Field(discriminator="source"),
]


class IngestResult(BaseModel):
    """Returned to the transport layer for every accepted event."""
    event_id: str
    status: str  # "processed" (direct) or "accepted" (batched, not yet durable)
