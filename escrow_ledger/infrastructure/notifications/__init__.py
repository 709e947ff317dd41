"""Notification delivery adapters."""

from .dispatchers import (
    LoggingNotificationDispatcher,
    WebhookConfig,
    WebhookNotificationDispatcher,
    WebhookPayload,
)

__all__ = [
    "LoggingNotificationDispatcher",
    "WebhookConfig",
    "WebhookNotificationDispatcher",
    "WebhookPayload",
]
