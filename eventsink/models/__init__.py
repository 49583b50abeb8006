"""
Database models - import all models here so metadata.create_all can discover them.
"""
from eventsink.models.github_event import GitHubEvent
from eventsink.models.linear_event import LinearEvent
from eventsink.models.slack_event import SlackEvent
from eventsink.models.webhook_delivery import WebhookDelivery
from eventsink.models.webhook_configuration import WebhookConfiguration

__all__ = [
    "GitHubEvent",
    "LinearEvent",
    "SlackEvent",
    "WebhookDelivery",
    "WebhookConfiguration",
]
