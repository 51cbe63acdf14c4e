"""Services for Scope Sentinel."""

from sentinel.services.notifications import (
    BufferedNotificationSink,
    DatabaseNotificationSink,
    InMemoryNotificationSink,
    NotificationDispatcher,
    NotificationEvent,
    NotificationEventType,
)

__all__ = [
    "BufferedNotificationSink",
    "DatabaseNotificationSink",
    "InMemoryNotificationSink",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationEventType",
]
