"""
Billing Domain Layer
====================

Contains:
- Value Objects: Plan, PlanLimits, PlanCatalog, LimitCheckResult
- Domain Services: QuotaCalculator (pure quota arithmetic)

This layer has no dependencies on infrastructure.
"""

from helpdesk.billing.domain.value_objects import (
    DIMENSION_LIMIT_FIELDS,
    UNLIMITED,
    UNLIMITED_REMAINING,
    USAGE_FIELDS,
    LimitCheckResult,
    Plan,
    PlanCatalog,
    PlanLimits,
    QuotaCalculator,
    default_plans,
)

__all__ = [
    "DIMENSION_LIMIT_FIELDS",
    "UNLIMITED",
    "UNLIMITED_REMAINING",
    "USAGE_FIELDS",
    "LimitCheckResult",
    "Plan",
    "PlanCatalog",
    "PlanLimits",
    "QuotaCalculator",
    "default_plans",
]
