"""
Billing Controllers (API Routes)
================================

FastAPI routes for plans, the organization's subscription and its usage.

Billing services are keyed by organization; the caller's organization and
role come from the identity headers.
"""

from typing import List

from fastapi import APIRouter, Depends, status

from helpdesk.billing.application import (
    CancelSubscriptionDTO,
    ChangePlanDTO,
    LimitCheckResponse,
    PlanChangeResponse,
    PlanResponse,
    SubscriptionCreateDTO,
    SubscriptionResponse,
    UsageHistoryResponse,
    UsageIncrementDTO,
    UsageResponse,
)
from helpdesk.billing.domain import LimitCheckResult
from helpdesk.config import UsageDimension
from helpdesk.container import ServiceContainer
from helpdesk.core.context import ActorContext
from helpdesk.core.exceptions import ResourceNotFoundException
from helpdesk.core.permissions import Capability, require_capability
from helpdesk.shared.api.dependencies import get_actor, get_services
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/billing", tags=["Billing"])


# ========== Example payloads for Swagger ==========

LIMIT_CHECK_EXAMPLE = {
    "allowed": True,
    "dimension": "tickets",
    "current": 48,
    "limit": 50,
    "remaining": 2,
    "percent_used": 96,
    "should_alert": True,
    "upgrade_url": "/settings/billing"
}


def _limit_response(result: LimitCheckResult) -> LimitCheckResponse:
    return LimitCheckResponse(
        allowed=result.allowed,
        dimension=result.dimension.value,
        current=result.current,
        limit=result.limit,
        remaining=result.remaining,
        percent_used=result.percent_used,
        should_alert=result.should_alert,
        upgrade_url=result.upgrade_url,
    )


# ========== Plans ==========

@router.get(
    "/plans",
    response_model=List[PlanResponse],
    summary="List plans",
    description="Active plans of the catalog, in display order."
)
async def list_plans(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    return services.subscriptions.list_plans()


# ========== Subscription ==========

@router.get(
    "/subscription",
    response_model=SubscriptionResponse,
    summary="Get subscription",
    responses={404: {"description": "Organization has no subscription"}}
)
async def get_subscription(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_BILLING)
    return await services.subscriptions.get(actor.organization_id)


@router.post(
    "/subscription",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Subscribe organization",
    description="Subscribe the organization, on the default plan unless `plan_id` is given.",
    responses={409: {"description": "Organization already has a subscription"}}
)
async def create_subscription(
    data: SubscriptionCreateDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_BILLING)
    return await services.subscriptions.create_for_organization(actor.organization_id, data.plan_id)


@router.post(
    "/subscription/change-plan",
    response_model=PlanChangeResponse,
    summary="Change plan",
    description="""
    Move the organization to another plan mid-period.

    - **Upgrade** (higher price): each dimension's remaining balance grows
      by the limit increase.
    - **Downgrade**: remaining = max(0, new limit - used).
    """,
    responses={
        400: {"description": "Already subscribed to this plan"},
        404: {"description": "No subscription, or unknown plan"}
    }
)
async def change_plan(
    data: ChangePlanDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_BILLING)
    result = await services.subscriptions.change_plan(actor.organization_id, data.plan_id)
    return PlanChangeResponse(
        subscription=SubscriptionResponse.model_validate(result.subscription),
        previous_plan_id=result.previous_plan.id,
        plan_id=result.plan.id,
        is_upgrade=result.is_upgrade,
        usage=UsageResponse.model_validate(result.usage) if result.usage is not None else None,
    )


@router.post(
    "/subscription/cancel",
    response_model=SubscriptionResponse,
    summary="Cancel subscription",
    description="Cancel at the end of the current period, or now with `immediately: true`."
)
async def cancel_subscription(
    data: CancelSubscriptionDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_BILLING)
    return await services.subscriptions.cancel(actor.organization_id, data.immediately)


@router.post(
    "/subscription/reactivate",
    response_model=SubscriptionResponse,
    summary="Reactivate subscription",
    responses={400: {"description": "Subscription is not canceled"}}
)
async def reactivate_subscription(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_BILLING)
    return await services.subscriptions.reactivate(actor.organization_id)


# ========== Usage ==========

@router.get(
    "/usage",
    response_model=UsageResponse,
    summary="Current period usage",
    responses={404: {"description": "No usage recorded for the current period"}}
)
async def get_usage(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_BILLING)
    record = await services.ledger.get_current(actor.organization_id)
    if record is None:
        raise ResourceNotFoundException("Usage record", str(actor.organization_id))
    return record


@router.get(
    "/usage/history",
    response_model=UsageHistoryResponse,
    summary="Usage history",
    description="Current and retired usage records, newest first."
)
async def usage_history(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_BILLING)
    records = await services.ledger.history(actor.organization_id)
    return UsageHistoryResponse(items=[UsageResponse.model_validate(r) for r in records])


@router.get(
    "/limits/{dimension}",
    response_model=LimitCheckResponse,
    summary="Check limit",
    description="""
    Quota standing for one dimension (`tickets`, `messages`, `storage`, `api`).

    Without a subscription the check is denied with 100% used.
    """,
    responses={
        200: {
            "description": "Quota standing",
            "content": {"application/json": {"example": LIMIT_CHECK_EXAMPLE}}
        }
    }
)
async def check_limit(
    dimension: UsageDimension,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.VIEW_BILLING)
    return _limit_response(await services.quota.check_limit(actor.organization_id, dimension))


@router.post(
    "/usage/increment",
    response_model=LimitCheckResponse,
    summary="Record usage",
    description="Record usage metered outside this service (storage, API calls)."
)
async def increment_usage(
    data: UsageIncrementDTO,
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_BILLING)
    result = await services.quota.consume(actor.organization_id, UsageDimension(data.dimension), data.amount)
    return _limit_response(result)


@router.post(
    "/usage/reset",
    response_model=SubscriptionResponse,
    summary="Start a new billing period",
    description="Retire the current usage record and start a fresh period from now."
)
async def reset_usage(
    actor: ActorContext = Depends(get_actor),
    services: ServiceContainer = Depends(get_services)
):
    require_capability(actor, Capability.MANAGE_BILLING)
    subscription = await services.subscriptions.reset_usage_for_new_period(actor.organization_id)
    if subscription is None:
        raise ResourceNotFoundException("Subscription", str(actor.organization_id))
    return subscription


billing_router = router
