"""
Linear events - one row per normalized issue-tracker webhook.
"""
from sqlalchemy import Column, String, Text, Integer
from eventsink.database import Base
from eventsink.models.event_columns import EventColumnsMixin


class LinearEvent(EventColumnsMixin, Base):
    __tablename__ = "linear_events"

    team_id = Column(String(255), nullable=True)
    team_name = Column(String(255), nullable=True)
    project_id = Column(String(255), nullable=True)
    project_name = Column(String(255), nullable=True)

    issue_id = Column(String(255), nullable=True)
    issue_identifier = Column(String(100), nullable=True)
    issue_title = Column(Text, nullable=True)
    issue_state = Column(String(100), nullable=True)
    issue_priority = Column(Integer, nullable=True)

    assignee_id = Column(String(255), nullable=True)
    assignee_name = Column(String(255), nullable=True)
    creator_id = Column(String(255), nullable=True)
    creator_name = Column(String(255), nullable=True)

    comment_id = Column(String(255), nullable=True)
    comment_body = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<LinearEvent {self.event_type} {self.issue_identifier or self.team_name}>"
