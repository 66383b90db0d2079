"""
SLA Module
==========

Bounded Context for first-response commitments.

Responsibilities:
- Manage per-organization SLA policies per priority
- Resolve the first-response deadline for a ticket (policy, else default)
- Arm a deferred breach check at the deadline
- On firing, re-derive the breach decision from persisted state
- Notify the assignee and organization admins once per breach
"""

__version__ = "1.0.0"
