"""
Billing Application Layer
=========================

Contains:
- UsageLedger: per-period usage counters
- QuotaEnforcer: allow/deny, alerts, strict reservation
- SubscriptionManager: plan binding, plan changes, rollover
- Repository interfaces
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.billing.application.dto import (
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
from helpdesk.billing.application.services import (
    IPlanCatalogProvider,
    ISubscriptionRepository,
    IUsageRepository,
    PlanResolver,
    QuotaEnforcer,
    UsageLedger,
    remaining_of,
    used_of,
)
from helpdesk.billing.application.subscriptions import (
    ROLLOVER_TASK,
    PlanChangeResult,
    SubscriptionManager,
)

__all__ = [
    "CancelSubscriptionDTO",
    "ChangePlanDTO",
    "LimitCheckResponse",
    "PlanChangeResponse",
    "PlanResponse",
    "SubscriptionCreateDTO",
    "SubscriptionResponse",
    "UsageHistoryResponse",
    "UsageIncrementDTO",
    "UsageResponse",
    "IPlanCatalogProvider",
    "ISubscriptionRepository",
    "IUsageRepository",
    "PlanResolver",
    "QuotaEnforcer",
    "UsageLedger",
    "remaining_of",
    "used_of",
    "ROLLOVER_TASK",
    "PlanChangeResult",
    "SubscriptionManager",
]
