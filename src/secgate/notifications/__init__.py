"""Policy violation notifications: channels and dispatcher."""

from secgate.notifications.channels import (
    LogChannel,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
    violation_payload,
)
from secgate.notifications.dispatcher import (
    DeliveryResult,
    NotificationDispatcher,
    NotificationRequest,
    build_dispatcher,
)

__all__ = [
    "DeliveryResult",
    "LogChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationRequest",
    "SlackChannel",
    "WebhookChannel",
    "build_dispatcher",
    "violation_payload",
]
