"""
Notifications Module
====================

Bounded context turning domain events into per-user notifications.

Responsibilities:
- Resolve recipients (assignee, customer, organization admins)
- Deduplicate recipients per event
- Enqueue one delivery task per recipient
- Deliver through a pluggable sink (webhook or log)
"""

__version__ = "1.0.0"
