"""
Billing Module
==============

Bounded context for plans, subscriptions and usage quotas.

Responsibilities:
- Serve the read-only plan catalog
- Bind each organization to one plan and one billing period
- Meter tickets, messages, storage and API calls per period
- Allow or deny quota-consuming operations
- Reconcile remaining quota on mid-period plan changes
- Roll periods over through deferred tasks
"""

__version__ = "1.0.0"
