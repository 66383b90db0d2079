"""
Tickets Module
==============

Bounded Context for the ticket lifecycle.

Responsibilities:
- Create tickets behind the tickets quota and arm their SLA deadline
- Apply status, priority, assignment and tag transitions
- Keep the append-only activity timeline
- Messages, with first-response tracking and the messages quota
- Bulk update/assign/delete and merge with per-item results
- Auto-close stale resolved and pending tickets
"""

__version__ = "1.0.0"
