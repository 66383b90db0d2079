"""
Billing Value Objects
=====================

Immutable plan catalog plus the pure quota arithmetic shared by the ledger,
the enforcer and plan-change reconciliation.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from helpdesk.config import UsageDimension

UNLIMITED = -1
# Stored in "remaining" columns for unlimited dimensions
UNLIMITED_REMAINING = 999_999_999


class PlanLimits(BaseModel):
    """Quota limits of a plan; -1 means unlimited."""
    model_config = ConfigDict(frozen=True)

    tickets_per_month: int = Field(default=50, ge=UNLIMITED)
    messages_per_month: int = Field(default=200, ge=UNLIMITED)
    storage_per_org_mb: int = Field(default=100, ge=UNLIMITED)
    api_requests_per_minute: int = Field(default=30, ge=UNLIMITED)
    agents_per_org: int = Field(default=2, ge=UNLIMITED)
    customers_per_org: int = Field(default=50, ge=UNLIMITED)

    def limit_for(self, dimension: UsageDimension) -> int:
        return getattr(self, DIMENSION_LIMIT_FIELDS[UsageDimension(dimension)])


DIMENSION_LIMIT_FIELDS: Dict[UsageDimension, str] = {
    UsageDimension.TICKETS: "tickets_per_month",
    UsageDimension.MESSAGES: "messages_per_month",
    UsageDimension.STORAGE: "storage_per_org_mb",
    UsageDimension.API: "api_requests_per_minute",
}


class Plan(BaseModel):
    """A named service tier."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    name: str
    price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    limits: PlanLimits = Field(default_factory=PlanLimits)
    features: Dict[str, bool] = Field(default_factory=dict)
    alerts_enabled: bool = True
    alert_threshold: int = Field(default=80, ge=0, le=100)
    is_active: bool = True
    is_default: bool = False
    position: int = 0

    def limit_for(self, dimension: UsageDimension) -> int:
        return self.limits.limit_for(dimension)


DEFAULT_FREE_FEATURES = {
    "custom_branding": False,
    "api_access": False,
    "sla_policies": False,
    "canned_responses": True,
    "priority_support": False,
}


def default_plans() -> List[Plan]:
    """Built-in tiers used when no catalog file is present."""
    return [
        Plan(
            id="free",
            slug="free",
            name="Free",
            price=Decimal("0"),
            limits=PlanLimits(),
            features=DEFAULT_FREE_FEATURES,
            is_default=True,
            position=0,
        ),
        Plan(
            id="pro",
            slug="pro",
            name="Pro",
            price=Decimal("29"),
            limits=PlanLimits(
                tickets_per_month=1000,
                messages_per_month=5000,
                storage_per_org_mb=5120,
                api_requests_per_minute=120,
                agents_per_org=10,
                customers_per_org=1000,
            ),
            features={**DEFAULT_FREE_FEATURES, "api_access": True, "sla_policies": True},
            position=1,
        ),
        Plan(
            id="enterprise",
            slug="enterprise",
            name="Enterprise",
            price=Decimal("99"),
            limits=PlanLimits(
                tickets_per_month=UNLIMITED,
                messages_per_month=UNLIMITED,
                storage_per_org_mb=UNLIMITED,
                api_requests_per_minute=UNLIMITED,
                agents_per_org=UNLIMITED,
                customers_per_org=UNLIMITED,
            ),
            features={key: True for key in DEFAULT_FREE_FEATURES},
            position=2,
        ),
    ]


class PlanCatalog(BaseModel):
    """Read-only table of plans, loaded once at startup."""
    model_config = ConfigDict(frozen=True)

    plans: Tuple[Plan, ...] = Field(default_factory=lambda: tuple(default_plans()))

    @field_validator("plans")
    @classmethod
    def validate_unique_ids(cls, v: Tuple[Plan, ...]) -> Tuple[Plan, ...]:
        ids = [plan.id for plan in v]
        if len(ids) != len(set(ids)):
            raise ValueError("plan ids must be unique")
        return v

    @model_validator(mode="after")
    def validate_single_default(self) -> "PlanCatalog":
        defaults = [plan for plan in self.plans if plan.is_default and plan.is_active]
        if len(defaults) != 1:
            raise ValueError("exactly one active default plan is required")
        return self

    def get(self, plan_id: str) -> Optional[Plan]:
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        return None

    def get_default(self) -> Plan:
        return next(plan for plan in self.plans if plan.is_default and plan.is_active)

    def list(self, include_inactive: bool = False) -> List[Plan]:
        plans = [p for p in self.plans if include_inactive or p.is_active]
        return sorted(plans, key=lambda p: p.position)


@dataclass(frozen=True)
class LimitCheckResult:
    """Outcome of a quota check for one dimension."""
    allowed: bool
    dimension: UsageDimension
    current: int
    limit: int
    remaining: int
    percent_used: int
    should_alert: bool = False
    upgrade_url: Optional[str] = None


class QuotaCalculator:
    """
    Pure quota arithmetic.

    Stateless utility class; all remaining/percent math lives here so the
    ledger, the enforcer and plan changes agree.
    """

    @staticmethod
    def is_unlimited(limit: int) -> bool:
        return limit == UNLIMITED

    @staticmethod
    def initial_remaining(limit: int) -> int:
        return UNLIMITED_REMAINING if limit == UNLIMITED else max(0, limit)

    @staticmethod
    def check(
        dimension: UsageDimension,
        current: int,
        plan: Plan,
        upgrade_url: Optional[str] = None
    ) -> LimitCheckResult:
        limit = plan.limit_for(dimension)

        if limit == UNLIMITED:
            return LimitCheckResult(
                allowed=True,
                dimension=dimension,
                current=current,
                limit=UNLIMITED,
                remaining=UNLIMITED_REMAINING,
                percent_used=0,
                should_alert=False,
            )

        # Half-up rounding
        percent_used = int(current * 100 / limit + 0.5) if limit > 0 else 100
        allowed = current < limit
        return LimitCheckResult(
            allowed=allowed,
            dimension=dimension,
            current=current,
            limit=limit,
            remaining=max(0, limit - current),
            percent_used=percent_used,
            should_alert=plan.alerts_enabled and percent_used >= plan.alert_threshold,
            upgrade_url=None if allowed else upgrade_url,
        )

    @staticmethod
    def denied_without_subscription(dimension: UsageDimension, upgrade_url: str) -> LimitCheckResult:
        return LimitCheckResult(
            allowed=False,
            dimension=dimension,
            current=0,
            limit=0,
            remaining=0,
            percent_used=100,
            should_alert=False,
            upgrade_url=upgrade_url,
        )

    @staticmethod
    def remaining_after_upgrade(old_limit: int, new_limit: int, remaining: int) -> int:
        """Add the limit increase to the balance; never subtract."""
        if old_limit == UNLIMITED or new_limit == UNLIMITED:
            return UNLIMITED_REMAINING
        return remaining + max(0, new_limit - old_limit)

    @staticmethod
    def remaining_after_downgrade(new_limit: int, used: int) -> int:
        """Discard the old balance; consumed usage counts fully."""
        if new_limit == UNLIMITED:
            return UNLIMITED_REMAINING
        return max(0, new_limit - used)


# (used, remaining, alert-sent) attribute names of a usage record per dimension
USAGE_FIELDS: Dict[UsageDimension, Tuple[str, str, str]] = {
    UsageDimension.TICKETS: ("tickets_created", "tickets_remaining", "ticket_alert_sent_at"),
    UsageDimension.MESSAGES: ("messages_created", "messages_remaining", "message_alert_sent_at"),
    UsageDimension.STORAGE: ("storage_used_mb", "storage_remaining_mb", "storage_alert_sent_at"),
    UsageDimension.API: ("api_requests_count", "api_requests_remaining", "api_alert_sent_at"),
}
