"""
SLA Controllers (API Routes)
=============================

FastAPI routes for organization SLA policies.

Controllers are thin - they delegate to application services.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from helpdesk.config import TicketPriority
from helpdesk.container import ServiceContainer
from helpdesk.core.context import ActorContext
from helpdesk.core.exceptions import ResourceNotFoundException
from helpdesk.core.permissions import Capability, require_capability
from helpdesk.shared.api.dependencies import get_actor, get_services
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application import SLAPolicyCreateDTO, SLAPolicyResponse, SLAPolicyUpdateDTO

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Policies"])


# ========== Example payloads for Swagger ==========

POLICY_EXAMPLE = {
    "id": "123e4567-e89b-12d3-a456-426614174000",
    "organization_id": "9b2d7c1e-4f5a-4c33-9e0b-8d1f2a3b4c5d",
    "name": "High priority",
    "priority": "high",
    "first_response_time": 240,
    "resolution_time": 480,
    "business_hours_only": False,
    "is_default": True,
    "created_at": "2024-01-15T10:00:00Z",
    "updated_at": "2024-01-15T10:00:00Z"
}


# ========== Route Handlers ==========

@router.get(
    "/policies",
    response_model=List[SLAPolicyResponse],
    summary="List SLA policies"
)
async def list_policies(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_ORG_TICKETS)
    return await services.sla_policies.list(actor.organization_id)


@router.post(
    "/policies",
    response_model=SLAPolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create SLA policy",
    description="""
    Create the default policy for a priority.

    If the priority already has a default policy it is updated in place,
    so there is always at most one default per priority.

    **Times are in minutes.** A new ticket's first-response deadline is
    `created_at + first_response_time` of its priority's default policy,
    or of the system default when the organization has none.
    """,
    responses={
        201: {
            "description": "Policy created or updated",
            "content": {"application/json": {"example": POLICY_EXAMPLE}}
        }
    }
)
async def upsert_policy(
    data: SLAPolicyCreateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_SLA_POLICIES)
    return await services.sla_policies.upsert(actor.organization_id, data)


@router.post(
    "/policies/initialize-defaults",
    response_model=List[SLAPolicyResponse],
    summary="Initialize default policies",
    description="Create a policy from the system defaults for every priority that has none. Returns the created policies."
)
async def initialize_defaults(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_SLA_POLICIES)
    return await services.sla_policies.initialize_defaults(actor.organization_id)


@router.get(
    "/policies/priority/{priority}",
    response_model=SLAPolicyResponse,
    summary="Get the default policy for a priority",
    responses={404: {"description": "No policy for this priority"}}
)
async def get_policy_by_priority(
    priority: TicketPriority,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_ORG_TICKETS)
    policy = await services.sla_policies.get_by_priority(actor.organization_id, priority)
    if policy is None:
        raise ResourceNotFoundException("SLA policy", priority.value)
    return policy


@router.get(
    "/policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Get SLA policy",
    responses={404: {"description": "Policy not found"}}
)
async def get_policy(
    policy_id: UUID,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_ORG_TICKETS)
    return await services.sla_policies.get(actor.organization_id, policy_id)


@router.patch(
    "/policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Update SLA policy",
    description="Changes apply to deadlines armed from now on; already armed checks keep their deadline."
)
async def update_policy(
    policy_id: UUID,
    data: SLAPolicyUpdateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_SLA_POLICIES)
    return await services.sla_policies.update(actor.organization_id, policy_id, data)


@router.delete(
    "/policies/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete SLA policy",
    description="The priority falls back to the system default."
)
async def delete_policy(
    policy_id: UUID,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_SLA_POLICIES)
    await services.sla_policies.remove(actor.organization_id, policy_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


sla_router = router
