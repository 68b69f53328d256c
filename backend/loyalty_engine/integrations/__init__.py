"""External service integrations."""

from .webhook import WebhookNotificationSink

__all__ = ["WebhookNotificationSink"]
