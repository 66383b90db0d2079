"""
Billing Infrastructure Layer
============================

- Models: SQLAlchemy ORM models
- Repositories: Data access and the YAML plan catalog
"""

from helpdesk.billing.infrastructure.models import SubscriptionModel, UsageRecordModel
from helpdesk.billing.infrastructure.repositories import (
    SQLAlchemySubscriptionRepository,
    SQLAlchemyUsageRepository,
    YAMLPlanCatalogProvider,
)

__all__ = [
    "SubscriptionModel",
    "UsageRecordModel",
    "SQLAlchemySubscriptionRepository",
    "SQLAlchemyUsageRepository",
    "YAMLPlanCatalogProvider",
]
