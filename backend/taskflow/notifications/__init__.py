"""Email job queue: message types, channels, and email delivery."""

from taskflow.notifications.channel import Delivery, NotificationChannel
from taskflow.notifications.messages import (
    MessageDecodeError,
    MessageType,
    NotificationMessage,
)

__all__ = [
    "Delivery",
    "MessageDecodeError",
    "MessageType",
    "NotificationChannel",
    "NotificationMessage",
]
