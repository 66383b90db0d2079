"""
Notifications Domain Layer
==========================

Value objects describing a single notification.
"""

from helpdesk.notifications.domain.value_objects import Notification

__all__ = ["Notification"]
