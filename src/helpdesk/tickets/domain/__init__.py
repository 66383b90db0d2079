"""
Tickets Domain Layer
====================

Contains:
- Entities: ActivityDraft
- Domain Services: TicketStateMachine (transition rules)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.tickets.domain.entities import ActivityDraft
from helpdesk.tickets.domain.state_machine import TRANSITIONS, TicketStateMachine

__all__ = ["ActivityDraft", "TRANSITIONS", "TicketStateMachine"]
