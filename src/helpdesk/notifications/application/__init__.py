"""
Notifications Application Layer
===============================

Contains:
- NotificationFanout: event to per-recipient delivery tasks
- NotificationOutbox: deliveries held until the unit of work commits
- NotificationDeliveryHandler: deferred task handler
- INotificationSink: transport interface
"""

from helpdesk.notifications.application.services import (
    DELIVER_TASK,
    HeldDelivery,
    INotificationSink,
    NotificationDeliveryHandler,
    NotificationFanout,
    NotificationOutbox,
    unique_recipients,
)

__all__ = [
    "DELIVER_TASK",
    "HeldDelivery",
    "INotificationSink",
    "NotificationDeliveryHandler",
    "NotificationFanout",
    "NotificationOutbox",
    "unique_recipients",
]
