"""
GitHub events - one row per normalized code-host webhook.
"""
from sqlalchemy import Column, String, Text, Integer, BigInteger
from eventsink.database import Base
from eventsink.models.event_columns import EventColumnsMixin


class GitHubEvent(EventColumnsMixin, Base):
    __tablename__ = "github_events"

    repository_name = Column(String(255), nullable=True)
    repository_full_name = Column(String(255), nullable=True, index=True)
    repository_id = Column(BigInteger, nullable=True)
    sender_login = Column(String(255), nullable=True)
    sender_id = Column(BigInteger, nullable=True)
    organization = Column(String(255), nullable=True)

    pull_request_number = Column(Integer, nullable=True)
    pull_request_title = Column(Text, nullable=True)
    pull_request_state = Column(String(50), nullable=True)
    issue_number = Column(Integer, nullable=True)
    issue_title = Column(Text, nullable=True)
    issue_state = Column(String(50), nullable=True)
    commit_sha = Column(String(40), nullable=True)
    commit_message = Column(Text, nullable=True)
    branch_name = Column(String(255), nullable=True)
    tag_name = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<GitHubEvent {self.event_type} {self.repository_full_name}>"
