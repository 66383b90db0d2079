"""
Model Registry
==============

Imports every ORM model so ``Base.metadata`` knows all tables.
"""

from helpdesk.billing.infrastructure.models import SubscriptionModel, UsageRecordModel
from helpdesk.infrastructure.directory import MembershipModel
from helpdesk.sla.infrastructure.models import SLAPolicyModel
from helpdesk.tickets.infrastructure.models import ActivityModel, MessageModel, TicketModel

__all__ = [
    "SubscriptionModel",
    "UsageRecordModel",
    "MembershipModel",
    "SLAPolicyModel",
    "ActivityModel",
    "MessageModel",
    "TicketModel",
]
