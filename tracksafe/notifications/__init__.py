"""Fire-and-forget notification fan-out for moderation outcomes."""

from tracksafe.notifications.dispatcher import (
    LogSink,
    Notification,
    NotificationDispatcher,
    WebhookSink,
    build_dispatcher,
    build_notification,
)

__all__ = [
    "LogSink",
    "Notification",
    "NotificationDispatcher",
    "WebhookSink",
    "build_dispatcher",
    "build_notification",
]
