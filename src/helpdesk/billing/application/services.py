"""
Billing Application Services
============================

Usage Ledger and Quota Enforcer.

The baseline flow for a quota-consuming operation is check-then-commit:
``QuotaEnforcer.enforce`` before the operation, ``QuotaEnforcer.consume``
after it. Two concurrent requests can both pass the check, so the ledger
is soft and may overshoot by the number of racing requests. Deployments that
need a hard ceiling switch to ``QuotaEnforcer.reserve``, which is a single
conditional update.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from helpdesk.billing.domain import (
    LimitCheckResult,
    Plan,
    PlanCatalog,
    QuotaCalculator,
    USAGE_FIELDS,
)
from helpdesk.config import SubscriptionStatus, UsageDimension, settings
from helpdesk.core.clock import utcnow
from helpdesk.core.exceptions import (
    BadRequestException,
    LimitExceededException,
    ResourceNotFoundException,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISubscriptionRepository(ABC):
    """Interface for subscription data access."""

    @abstractmethod
    async def get_by_organization(self, organization_id: UUID) -> Optional[Any]:
        """Get the organization's subscription row."""

    @abstractmethod
    async def create(
        self,
        organization_id: UUID,
        plan_id: str,
        period_start: datetime,
        period_end: datetime
    ) -> Any:
        """Create an active subscription."""

    @abstractmethod
    async def save(self, subscription: Any) -> Any:
        """Flush changes made to a loaded subscription."""

    @abstractmethod
    async def list_expired(self, now: datetime, limit: int = 500) -> List[Any]:
        """Subscriptions whose current period ended at or before ``now``."""


class IUsageRepository(ABC):
    """Interface for usage record data access."""

    @abstractmethod
    async def get_current(self, organization_id: UUID) -> Optional[Any]:
        """Get the current usage record."""

    @abstractmethod
    async def create_current(
        self,
        organization_id: UUID,
        period_start: datetime,
        period_end: datetime,
        remaining: Dict[UsageDimension, int]
    ) -> Any:
        """Retire the current record (if any) and insert a zeroed current one."""

    @abstractmethod
    async def increment(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int,
        now: datetime
    ) -> Optional[Any]:
        """Atomically add to used and subtract from remaining with a zero floor."""

    @abstractmethod
    async def try_consume(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int,
        now: datetime
    ) -> Optional[Any]:
        """Increment only if remaining covers ``amount``; None when refused."""

    @abstractmethod
    async def set_remaining(
        self,
        record: Any,
        remaining: Dict[UsageDimension, int],
        now: datetime
    ) -> Any:
        """Overwrite remaining balances (plan change reconciliation)."""

    @abstractmethod
    async def mark_alert_sent(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        now: datetime
    ) -> bool:
        """Stamp the alert timestamp if unset; True only for the caller that stamped it."""

    @abstractmethod
    async def history(self, organization_id: UUID, limit: int = 12) -> List[Any]:
        """Usage records, newest period first."""


class IPlanCatalogProvider(ABC):
    """Interface for plan catalog access."""

    @abstractmethod
    def get_catalog(self) -> PlanCatalog:
        """Get the loaded plan catalog."""


def used_of(record: Any, dimension: UsageDimension) -> int:
    return getattr(record, USAGE_FIELDS[UsageDimension(dimension)][0])


def remaining_of(record: Any, dimension: UsageDimension) -> int:
    return getattr(record, USAGE_FIELDS[UsageDimension(dimension)][1])


def remaining_for_plan(plan: Plan) -> Dict[UsageDimension, int]:
    """Fresh balances for a new period."""
    return {
        dimension: QuotaCalculator.initial_remaining(plan.limit_for(dimension))
        for dimension in UsageDimension
    }


class PlanResolver:
    """Shared lookup of an organization's subscription and plan."""

    def __init__(
        self,
        subscription_repository: ISubscriptionRepository,
        catalog_provider: IPlanCatalogProvider
    ):
        self._subscriptions = subscription_repository
        self._catalog_provider = catalog_provider

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog_provider.get_catalog()

    def plan_or_default(self, plan_id: str) -> Plan:
        plan = self.catalog.get(plan_id)
        if plan is None:
            logger.warning("Subscribed plan missing from catalog, using default", extra={"plan_id": plan_id})
            return self.catalog.get_default()
        return plan

    async def active_subscription(self, organization_id: UUID) -> Optional[Tuple[Any, Plan]]:
        """(subscription, plan) unless the organization has no live subscription."""
        subscription = await self._subscriptions.get_by_organization(organization_id)
        if subscription is None or subscription.status == SubscriptionStatus.CANCELED:
            return None
        return subscription, self.plan_or_default(subscription.plan_id)


class UsageLedger:
    """
    Per-organization, per-period usage counters.

    Counters live only in the relational store; every mutation is a single
    UPDATE so concurrent increments from different requests never lose
    writes.
    """

    def __init__(
        self,
        usage_repository: IUsageRepository,
        plans: PlanResolver,
        clock: Callable[[], datetime] = utcnow
    ):
        self._usage = usage_repository
        self._plans = plans
        self._clock = clock

    async def get_current(self, organization_id: UUID) -> Optional[Any]:
        return await self._usage.get_current(organization_id)

    async def initialize(
        self,
        organization_id: UUID,
        plan: Plan,
        period_start: datetime,
        period_end: datetime
    ) -> Any:
        """Start a zeroed period from the plan's limits."""
        record = await self._usage.create_current(
            organization_id, period_start, period_end, remaining_for_plan(plan)
        )
        logger.info(
            "Usage period initialized",
            extra={
                "organization_id": str(organization_id),
                "plan_id": plan.id,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            }
        )
        return record

    async def ensure_current(self, organization_id: UUID) -> Any:
        """
        Return the current record, creating it from the subscription if absent.

        Raises:
            ResourceNotFoundException: Organization has no subscription
        """
        record = await self._usage.get_current(organization_id)
        if record is not None:
            return record

        active = await self._plans.active_subscription(organization_id)
        if active is None:
            raise ResourceNotFoundException("Subscription", str(organization_id))
        subscription, plan = active

        logger.warning(
            "Usage record missing, initializing from subscription",
            extra={"organization_id": str(organization_id)}
        )
        return await self.initialize(
            organization_id, plan, subscription.current_period_start, subscription.current_period_end
        )

    async def increment_usage(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int = 1
    ) -> Any:
        """Add ``amount`` to the dimension; remaining is clamped at zero."""
        dimension = UsageDimension(dimension)
        if amount < 1:
            raise BadRequestException("Usage increment must be positive", {"amount": amount})

        record = await self._usage.increment(organization_id, dimension, amount, self._clock())
        if record is None:
            await self.ensure_current(organization_id)
            record = await self._usage.increment(organization_id, dimension, amount, self._clock())
        return record

    async def try_consume(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int = 1
    ) -> Optional[Any]:
        """Increment only when the balance covers ``amount``."""
        dimension = UsageDimension(dimension)
        record = await self._usage.try_consume(organization_id, dimension, amount, self._clock())
        if record is None and await self._usage.get_current(organization_id) is None:
            await self.ensure_current(organization_id)
            record = await self._usage.try_consume(organization_id, dimension, amount, self._clock())
        return record

    async def reconcile(self, organization_id: UUID, old_plan: Plan, new_plan: Plan, is_upgrade: bool) -> Any:
        """Redistribute remaining balances after a plan change."""
        record = await self._usage.get_current(organization_id)
        if record is None:
            return await self.ensure_current(organization_id)

        remaining = {}
        for dimension in UsageDimension:
            old_limit = old_plan.limit_for(dimension)
            new_limit = new_plan.limit_for(dimension)
            if is_upgrade:
                remaining[dimension] = QuotaCalculator.remaining_after_upgrade(
                    old_limit, new_limit, remaining_of(record, dimension)
                )
            else:
                remaining[dimension] = QuotaCalculator.remaining_after_downgrade(
                    new_limit, used_of(record, dimension)
                )
        return await self._usage.set_remaining(record, remaining, self._clock())

    async def mark_alert_sent(self, organization_id: UUID, dimension: UsageDimension) -> bool:
        return await self._usage.mark_alert_sent(organization_id, UsageDimension(dimension), self._clock())

    async def history(self, organization_id: UUID, limit: int = 12) -> List[Any]:
        return await self._usage.history(organization_id, limit)


class QuotaEnforcer:
    """
    Allow/deny decisions for quota-consuming operations.

    Usage alerts go out once per dimension per period, to organization
    admins, the first time a check crosses the plan's alert threshold.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        plans: PlanResolver,
        notifier: Optional[Any] = None,
        upgrade_url: Optional[str] = None
    ):
        self._ledger = ledger
        self._plans = plans
        self._notifier = notifier
        self._upgrade_url = upgrade_url or settings.billing_upgrade_url

    async def check_limit(self, organization_id: UUID, dimension: UsageDimension) -> LimitCheckResult:
        dimension = UsageDimension(dimension)
        active = await self._plans.active_subscription(organization_id)
        if active is None:
            return QuotaCalculator.denied_without_subscription(dimension, self._upgrade_url)
        _, plan = active

        record = await self._ledger.get_current(organization_id)
        current = used_of(record, dimension) if record is not None else 0
        return QuotaCalculator.check(dimension, current, plan, self._upgrade_url)

    async def enforce(self, organization_id: UUID, dimension: UsageDimension) -> LimitCheckResult:
        """
        Raise unless the dimension has quota left.

        Raises:
            LimitExceededException: Limit reached or no subscription
        """
        result = await self.check_limit(organization_id, dimension)
        if not result.allowed:
            logger.info(
                "Quota limit reached",
                extra={
                    "organization_id": str(organization_id),
                    "dimension": result.dimension.value,
                    "current": result.current,
                    "limit": result.limit,
                }
            )
            raise LimitExceededException(
                result.dimension.value, result.current, result.limit, result.upgrade_url
            )
        await self.maybe_alert(organization_id, result)
        return result

    async def consume(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int = 1
    ) -> LimitCheckResult:
        """Record usage after the operation succeeded and return the new standing."""
        dimension = UsageDimension(dimension)
        await self._ledger.increment_usage(organization_id, dimension, amount)
        result = await self.check_limit(organization_id, dimension)
        await self.maybe_alert(organization_id, result)
        return result

    async def reserve(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int = 1
    ) -> LimitCheckResult:
        """
        Check and increment in one conditional update.

        Raises:
            LimitExceededException: Balance does not cover ``amount``
        """
        dimension = UsageDimension(dimension)
        active = await self._plans.active_subscription(organization_id)
        if active is None:
            raise LimitExceededException(dimension.value, 0, 0, self._upgrade_url)
        _, plan = active

        if QuotaCalculator.is_unlimited(plan.limit_for(dimension)):
            await self._ledger.increment_usage(organization_id, dimension, amount)
        else:
            record = await self._ledger.try_consume(organization_id, dimension, amount)
            if record is None:
                result = await self.check_limit(organization_id, dimension)
                raise LimitExceededException(
                    dimension.value, result.current, result.limit, self._upgrade_url
                )

        result = await self.check_limit(organization_id, dimension)
        await self.maybe_alert(organization_id, result)
        return result

    async def maybe_alert(self, organization_id: UUID, result: LimitCheckResult) -> bool:
        """Send the period's usage alert for this dimension if it is due and unsent."""
        if not result.should_alert:
            return False
        if not await self._ledger.mark_alert_sent(organization_id, result.dimension):
            return False

        record = await self._ledger.get_current(organization_id)
        period_key = record.period_start.isoformat() if record is not None else "unknown"
        if self._notifier is not None:
            await self._notifier.notify_usage_alert(
                organization_id,
                result.dimension.value,
                result.current,
                result.limit,
                result.percent_used,
                period_key,
            )
        return True
