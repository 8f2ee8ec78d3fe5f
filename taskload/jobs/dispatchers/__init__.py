from __future__ import annotations

from taskload.jobs.dispatchers.notifier import ReminderMessage, ReminderNotifier
from taskload.jobs.dispatchers.transports import (
    LoggingTransport,
    NotificationTransport,
    SmtpTransport,
    WebhookTransport,
    build_transport,
)

__all__ = [
    "ReminderMessage",
    "ReminderNotifier",
    "NotificationTransport",
    "SmtpTransport",
    "WebhookTransport",
    "LoggingTransport",
    "build_transport",
]
