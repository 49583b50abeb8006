"""
Slack events - one row per normalized team-chat event callback.
"""
from sqlalchemy import Column, String, Text
from eventsink.database import Base
from eventsink.models.event_columns import EventColumnsMixin


class SlackEvent(EventColumnsMixin, Base):
    __tablename__ = "slack_events"

    event_subtype = Column(String(100), nullable=True)

    team_id = Column(String(255), nullable=True)
    team_domain = Column(String(255), nullable=True)
    channel_id = Column(String(255), nullable=True)
    channel_name = Column(String(255), nullable=True)
    channel_type = Column(String(50), nullable=True)
    user_id = Column(String(255), nullable=True)
    user_name = Column(String(255), nullable=True)
    bot_id = Column(String(255), nullable=True)

    message_text = Column(Text, nullable=True)
    message_ts = Column(String(50), nullable=True)
    thread_ts = Column(String(50), nullable=True)

    file_id = Column(String(255), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_type = Column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<SlackEvent {self.event_type} {self.channel_id}>"
