"""
Tickets Infrastructure Layer
============================

Contains:
- ORM Models: TicketModel, ActivityModel, MessageModel
- Repositories: SQLAlchemy implementations of the ticket interfaces
"""

from helpdesk.tickets.infrastructure.models import ActivityModel, MessageModel, TicketModel
from helpdesk.tickets.infrastructure.repositories import (
    SQLAlchemyActivityRepository,
    SQLAlchemyMessageRepository,
    SQLAlchemyTicketRepository,
)

__all__ = [
    "ActivityModel",
    "MessageModel",
    "TicketModel",
    "SQLAlchemyActivityRepository",
    "SQLAlchemyMessageRepository",
    "SQLAlchemyTicketRepository",
]
