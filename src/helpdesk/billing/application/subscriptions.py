"""
Subscription Manager
====================

Organization to plan binding, cancellation, and the two operations that
move quota around: mid-period plan changes and period rollover.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional
from uuid import UUID

from helpdesk.billing.application.services import (
    ISubscriptionRepository,
    PlanResolver,
    UsageLedger,
)
from helpdesk.billing.domain import Plan
from helpdesk.config import SubscriptionStatus
from helpdesk.core.clock import billing_period, utcnow
from helpdesk.core.exceptions import (
    BadRequestException,
    ConflictException,
    ResourceNotFoundException,
)
from helpdesk.core.interfaces import IDeferredTaskQueue
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ROLLOVER_TASK = "billing.rollover"


@dataclass(frozen=True)
class PlanChangeResult:
    """Outcome of ``SubscriptionManager.change_plan``."""
    subscription: Any
    previous_plan: Plan
    plan: Plan
    is_upgrade: bool
    usage: Any


class SubscriptionManager:
    """
    Manages subscriptions for organizations.

    Every method is keyed by organization id; there is one subscription
    row per organization.
    """

    def __init__(
        self,
        subscription_repository: ISubscriptionRepository,
        ledger: UsageLedger,
        plans: PlanResolver,
        task_queue: Optional[IDeferredTaskQueue] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._subscriptions = subscription_repository
        self._ledger = ledger
        self._plans = plans
        self._task_queue = task_queue
        self._clock = clock

    def list_plans(self) -> List[Plan]:
        return self._plans.catalog.list()

    def get_plan(self, plan_id: str) -> Plan:
        plan = self._plans.catalog.get(plan_id)
        if plan is None or not plan.is_active:
            raise ResourceNotFoundException("Plan", plan_id)
        return plan

    async def get(self, organization_id: UUID) -> Any:
        subscription = await self._subscriptions.get_by_organization(organization_id)
        if subscription is None:
            raise ResourceNotFoundException("Subscription", str(organization_id))
        return subscription

    async def create_for_organization(self, organization_id: UUID, plan_id: Optional[str] = None) -> Any:
        """
        Subscribe a new organization, defaulting to the catalog's default plan.

        Raises:
            ConflictException: The organization already has a subscription
            ResourceNotFoundException: Unknown or inactive plan
        """
        if await self._subscriptions.get_by_organization(organization_id) is not None:
            raise ConflictException(
                "Organization already has a subscription",
                {"organization_id": str(organization_id)}
            )

        plan = self.get_plan(plan_id) if plan_id else self._plans.catalog.get_default()
        period_start, period_end = billing_period(self._clock())

        subscription = await self._subscriptions.create(organization_id, plan.id, period_start, period_end)
        await self._ledger.initialize(organization_id, plan, period_start, period_end)

        logger.info(
            "Subscription created",
            extra={"organization_id": str(organization_id), "plan_id": plan.id}
        )
        return subscription

    async def change_plan(self, organization_id: UUID, new_plan_id: str) -> PlanChangeResult:
        """
        Move the organization to another plan mid-period.

        Price is the only upgrade signal. Upgrades add the limit increase to
        the remaining balance; downgrades recompute the balance from what was
        already used.

        Raises:
            ResourceNotFoundException: No subscription, or unknown/inactive plan
            BadRequestException: Already on that plan
        """
        subscription = await self.get(organization_id)
        new_plan = self.get_plan(new_plan_id)

        if subscription.plan_id == new_plan.id:
            raise BadRequestException("Already subscribed to this plan", {"plan_id": new_plan.id})

        old_plan = self._plans.plan_or_default(subscription.plan_id)
        is_upgrade = new_plan.price > old_plan.price

        subscription.previous_plan_id = subscription.plan_id
        subscription.plan_id = new_plan.id
        subscription.updated_at = self._clock()
        await self._subscriptions.save(subscription)

        usage = await self._ledger.reconcile(organization_id, old_plan, new_plan, is_upgrade)

        logger.info(
            "Subscription plan changed",
            extra={
                "organization_id": str(organization_id),
                "from_plan": old_plan.id,
                "to_plan": new_plan.id,
                "is_upgrade": is_upgrade,
            }
        )
        return PlanChangeResult(
            subscription=subscription,
            previous_plan=old_plan,
            plan=new_plan,
            is_upgrade=is_upgrade,
            usage=usage,
        )

    async def reset_usage_for_new_period(self, organization_id: UUID) -> Optional[Any]:
        """
        Start a new billing period at "now" with a zeroed usage record.

        Returns None when the organization has no subscription.
        """
        subscription = await self._subscriptions.get_by_organization(organization_id)
        if subscription is None:
            return None

        plan = self._plans.plan_or_default(subscription.plan_id)
        # Anchored on now rather than the old period end; a late rollover shifts the cycle.
        period_start, period_end = billing_period(self._clock())

        subscription.current_period_start = period_start
        subscription.current_period_end = period_end
        subscription.updated_at = period_start
        await self._subscriptions.save(subscription)

        await self._ledger.initialize(organization_id, plan, period_start, period_end)
        return subscription

    async def cancel(self, organization_id: UUID, immediately: bool = False) -> Any:
        subscription = await self.get(organization_id)
        now = self._clock()

        if immediately:
            subscription.status = SubscriptionStatus.CANCELED.value
            subscription.canceled_at = now
        else:
            subscription.cancel_at_period_end = True
        subscription.updated_at = now
        await self._subscriptions.save(subscription)

        logger.info(
            "Subscription canceled",
            extra={"organization_id": str(organization_id), "immediately": immediately}
        )
        return subscription

    async def reactivate(self, organization_id: UUID) -> Any:
        """
        Undo a cancellation.

        Raises:
            BadRequestException: Subscription is neither canceled nor set to cancel
        """
        subscription = await self.get(organization_id)
        if subscription.status != SubscriptionStatus.CANCELED and not subscription.cancel_at_period_end:
            raise BadRequestException("Subscription is not canceled")

        now = self._clock()
        was_canceled = subscription.status == SubscriptionStatus.CANCELED
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.cancel_at_period_end = False
        subscription.canceled_at = None
        subscription.updated_at = now
        await self._subscriptions.save(subscription)

        if was_canceled and subscription.current_period_end <= now:
            await self.reset_usage_for_new_period(organization_id)

        logger.info("Subscription reactivated", extra={"organization_id": str(organization_id)})
        return subscription

    async def schedule_rollovers(self, limit: int = 500) -> int:
        """Enqueue one rollover task per organization whose period ended."""
        if self._task_queue is None:
            raise RuntimeError("SubscriptionManager needs a task queue to schedule rollovers")

        now = self._clock()
        scheduled = 0
        for subscription in await self._subscriptions.list_expired(now, limit):
            period_end = subscription.current_period_end.isoformat()
            task_id = await self._task_queue.schedule(
                ROLLOVER_TASK,
                {"organization_id": str(subscription.organization_id), "period_end": period_end},
                now,
                dedupe_key=f"rollover:{subscription.organization_id}:{period_end}",
            )
            if task_id is not None:
                scheduled += 1

        if scheduled:
            logger.info("Billing rollovers scheduled", extra={"count": scheduled})
        return scheduled

    async def handle_rollover(self, payload: dict) -> bool:
        """
        Deferred task body for one organization's period rollover.

        Re-reads the subscription and does nothing unless the period is
        still expired, so duplicate deliveries are harmless.
        """
        organization_id = UUID(str(payload["organization_id"]))
        subscription = await self._subscriptions.get_by_organization(organization_id)
        now = self._clock()

        if subscription is None or subscription.status == SubscriptionStatus.CANCELED:
            return False
        if subscription.current_period_end > now:
            return False

        if subscription.cancel_at_period_end:
            subscription.status = SubscriptionStatus.CANCELED.value
            subscription.canceled_at = now
            subscription.updated_at = now
            await self._subscriptions.save(subscription)
            logger.info("Subscription canceled at period end", extra={"organization_id": str(organization_id)})
            return True

        await self.reset_usage_for_new_period(organization_id)
        logger.info("Billing period rolled over", extra={"organization_id": str(organization_id)})
        return True
