"""Notification channel abstraction layer."""

from reporting_agent.notifications.channels import NotificationChannel
from reporting_agent.notifications.notifier import Notifier
from reporting_agent.notifications.router import (
    NotificationRouter,
    parse_recipient,
    validate_recipients,
)

__all__ = [
    "NotificationChannel",
    "NotificationRouter",
    "Notifier",
    "parse_recipient",
    "validate_recipients",
]
