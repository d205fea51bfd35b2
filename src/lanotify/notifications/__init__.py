"""
Notifications module.

Debounces presence events and sends notifications via the configured
providers (log, desktop, webhook).
"""

from lanotify.notifications.models import DebounceEntry, Notification
from lanotify.notifications.dispatcher import NotificationDispatcher
from lanotify.notifications.providers import (
    DesktopProvider,
    LogProvider,
    NotificationProvider,
    WebhookProvider,
    build_providers,
)
from lanotify.notifications.formatters import event_to_notification

__all__ = [
    "DebounceEntry",
    "Notification",
    "NotificationDispatcher",
    "DesktopProvider",
    "LogProvider",
    "NotificationProvider",
    "WebhookProvider",
    "build_providers",
    "event_to_notification",
]
