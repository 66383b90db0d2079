"""
Tickets Application Layer
=========================

Contains:
- Services: TicketService (single-ticket lifecycle), BulkTicketService
- DTOs: Data transfer objects for API serialization
- Repository interfaces

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.tickets.application.bulk import BulkTicketService, unique_ids
from helpdesk.tickets.application.dto import (
    ActivityResponse,
    BulkAssignDTO,
    BulkDeleteDTO,
    BulkItemError,
    BulkOperationResult,
    BulkUpdateDTO,
    MergeResult,
    MergeTicketsDTO,
    MessageCreateDTO,
    MessageResponse,
    TicketAssignDTO,
    TicketCloseDTO,
    TicketCreateDTO,
    TicketListQuery,
    TicketListResponse,
    TicketResponse,
    TicketStatsResponse,
    TicketUpdateDTO,
)
from helpdesk.tickets.application.services import (
    IActivityRepository,
    IMessageRepository,
    ITicketRepository,
    TicketService,
    record_activities,
)

__all__ = [
    "BulkTicketService",
    "unique_ids",
    "ActivityResponse",
    "BulkAssignDTO",
    "BulkDeleteDTO",
    "BulkItemError",
    "BulkOperationResult",
    "BulkUpdateDTO",
    "MergeResult",
    "MergeTicketsDTO",
    "MessageCreateDTO",
    "MessageResponse",
    "TicketAssignDTO",
    "TicketCloseDTO",
    "TicketCreateDTO",
    "TicketListQuery",
    "TicketListResponse",
    "TicketResponse",
    "TicketStatsResponse",
    "TicketUpdateDTO",
    "IActivityRepository",
    "IMessageRepository",
    "ITicketRepository",
    "TicketService",
    "record_activities",
]
