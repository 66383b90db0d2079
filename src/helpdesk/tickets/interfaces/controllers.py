"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for the ticket lifecycle.

Controllers are thin - they delegate to application services. The
request session commits when the handler returns.
"""

from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from helpdesk.container import ServiceContainer
from helpdesk.core.context import ActorContext
from helpdesk.shared.api.dependencies import get_actor, get_services
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application import (
    ActivityResponse,
    BulkAssignDTO,
    BulkDeleteDTO,
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
from helpdesk.tickets.application.dto import PriorityStr, SortFieldStr, TicketStatusStr

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Example payloads for Swagger ==========

TICKET_CREATE_EXAMPLE = {
    "title": "Cannot export invoices to CSV",
    "description": "The export button spins forever since this morning.",
    "priority": "high",
    "channel": "web",
    "tags": ["billing", "export"]
}

BULK_RESULT_EXAMPLE = {
    "success_count": 2,
    "failure_count": 1,
    "errors": [
        {"ticket_id": "123e4567-e89b-12d3-a456-426614174000", "error": "Ticket not found"}
    ]
}

ERROR_RESPONSES = {
    400: {"description": "Invalid request or illegal transition"},
    403: {"description": "Insufficient permissions, other organization, or quota exhausted"},
    404: {"description": "Ticket not found"},
}


# ========== Ticket CRUD ==========

@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create ticket",
    description="""
    Open a new ticket in the caller's organization.

    - Consumes one unit of the **tickets** quota; when the plan limit is
      reached the call fails with `403 limit_exceeded`.
    - The ticket gets the next organization-scoped number.
    - The first-response SLA deadline is computed from the organization's
      policy for the priority (system default otherwise) and a breach
      check is armed for that instant.

    **Example Request**:
    ```json
    {
        "title": "Cannot export invoices to CSV",
        "priority": "high",
        "tags": ["billing", "export"]
    }
    ```
    """,
    responses={**ERROR_RESPONSES, 201: {
        "description": "Ticket created",
        "content": {"application/json": {"example": {**TICKET_CREATE_EXAMPLE, "number": 42, "status": "open"}}}
    }}
)
async def create_ticket(
    data: TicketCreateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.create(actor, data)


@router.get(
    "",
    response_model=TicketListResponse,
    summary="List tickets",
    description="""
    List tickets of the caller's organization.

    Customers only ever see their own tickets.

    **Query Parameters:**
    - `status`: Repeatable status filter (open, pending, resolved, closed)
    - `priority`: low, medium, high, urgent
    - `assignee_id`: User id, or `unassigned`
    - `search`: Text match on title and description, or a ticket number
    - `page`, `limit`: Pagination (limit max 100)
    """
)
async def list_tickets(
    status_filter: Optional[List[TicketStatusStr]] = Query(None, alias="status"),
    priority: Optional[PriorityStr] = Query(None),
    assignee_id: Optional[str] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: SortFieldStr = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    query = TicketListQuery(
        status=status_filter,
        priority=priority,
        assignee_id=assignee_id,
        customer_id=customer_id,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    items, total = await services.tickets.list(actor, query)
    return TicketListResponse(
        items=[TicketResponse.model_validate(t) for t in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=TicketStatsResponse,
    summary="Ticket statistics",
    description="Counts by status, and by priority for open and pending tickets. Agents and above."
)
async def ticket_stats(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return TicketStatsResponse(**await services.tickets.stats(actor))


# ========== Bulk Operations ==========
# Registered before the /{ticket_id} routes so "bulk" is not read as an id

BULK_RESPONSES = {
    200: {
        "description": "Per-ticket results",
        "content": {"application/json": {"example": BULK_RESULT_EXAMPLE}}
    },
    403: {"description": "Insufficient permissions"},
}


@router.post(
    "/bulk/update",
    response_model=BulkOperationResult,
    summary="Bulk update tickets",
    description="""
    Apply the same fields to up to 100 tickets. Each ticket is processed
    independently: failures are reported per ticket and do not undo the
    others.
    """,
    responses=BULK_RESPONSES
)
async def bulk_update(
    data: BulkUpdateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.bulk.bulk_update(actor, data)


@router.post(
    "/bulk/assign",
    response_model=BulkOperationResult,
    summary="Bulk assign tickets",
    responses=BULK_RESPONSES
)
async def bulk_assign(
    data: BulkAssignDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.bulk.bulk_assign(actor, data)


@router.post(
    "/bulk/delete",
    response_model=BulkOperationResult,
    summary="Bulk delete tickets",
    description="Close up to 100 tickets, or erase them with `permanent: true`. Admins and owners only.",
    responses=BULK_RESPONSES
)
async def bulk_delete(
    data: BulkDeleteDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.bulk.bulk_delete(actor, data)


@router.post(
    "/merge",
    response_model=MergeResult,
    summary="Merge tickets",
    description="""
    Merge up to 10 secondary tickets into a primary.

    Each secondary is closed with a back-reference to the primary. With
    `merge_comments` (default true) its messages are first copied to the
    primary, keeping their sender and timestamp. The primary's status is
    not changed.
    """,
    responses={**BULK_RESPONSES, 404: {"description": "Primary ticket not found"}}
)
async def merge_tickets(
    data: MergeTicketsDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.bulk.merge(actor, data)


# ========== Single Ticket ==========

@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
    responses=ERROR_RESPONSES
)
async def get_ticket(
    ticket_id: UUID,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.get(actor, ticket_id)


@router.patch(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update ticket",
    description="""
    Apply the fields that are sent. Every changed status, priority or tag
    set is recorded in the activity timeline.

    **Allowed status transitions:**
    - `open` → pending, resolved, closed
    - `pending` → open, resolved, closed
    - `resolved` → open, closed
    - `closed` → open
    """,
    responses=ERROR_RESPONSES
)
async def update_ticket(
    ticket_id: UUID,
    data: TicketUpdateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.update(actor, ticket_id, data)


@router.post(
    "/{ticket_id}/assign",
    response_model=TicketResponse,
    summary="Assign or unassign ticket",
    description="""
    Assign to an agent of the organization (`assignee_id`), or unassign
    with `null`. Assigning an open ticket moves it to pending; unassigning
    a pending ticket moves it back to open.
    """,
    responses=ERROR_RESPONSES
)
async def assign_ticket(
    ticket_id: UUID,
    data: TicketAssignDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.assign(actor, ticket_id, data.assignee_id)


@router.post(
    "/{ticket_id}/close",
    response_model=TicketResponse,
    summary="Close ticket",
    responses=ERROR_RESPONSES
)
async def close_ticket(
    ticket_id: UUID,
    data: Optional[TicketCloseDTO] = None,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.close(actor, ticket_id, data.reason if data else None)


@router.post(
    "/{ticket_id}/reopen",
    response_model=TicketResponse,
    summary="Reopen ticket",
    description="Reopen a closed ticket. Clears the SLA breach flag and arms a fresh deadline from now.",
    responses=ERROR_RESPONSES
)
async def reopen_ticket(
    ticket_id: UUID,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.reopen(actor, ticket_id)


# ========== Messages & Timeline ==========

@router.post(
    "/{ticket_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post message",
    description="""
    Post a reply or an internal note.

    - Customers cannot post internal notes.
    - The first staff reply stamps the ticket's first response, which
      satisfies its SLA.
    - Consumes one unit of the **messages** quota.
    """,
    responses=ERROR_RESPONSES
)
async def add_message(
    ticket_id: UUID,
    data: MessageCreateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.add_message(actor, ticket_id, data)


@router.get(
    "/{ticket_id}/messages",
    response_model=List[MessageResponse],
    summary="List messages",
    description="Messages oldest first. Internal notes are hidden from customers.",
    responses=ERROR_RESPONSES
)
async def list_messages(
    ticket_id: UUID,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.list_messages(actor, ticket_id)


@router.get(
    "/{ticket_id}/activities",
    response_model=List[ActivityResponse],
    summary="Activity timeline",
    responses=ERROR_RESPONSES
)
async def list_activities(
    ticket_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return await services.tickets.list_activities(actor, ticket_id, limit, offset)


tickets_router = router
