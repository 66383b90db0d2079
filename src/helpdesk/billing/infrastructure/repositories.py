"""
Billing Infrastructure Repositories
===================================

Concrete implementations of billing repository interfaces using SQLAlchemy,
plus the YAML-backed plan catalog provider.

Usage counters are only ever changed through single UPDATE statements so the
database's row-level atomicity is what keeps concurrent increments correct.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from uuid import UUID

import yaml
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.billing.application.services import (
    IPlanCatalogProvider,
    ISubscriptionRepository,
    IUsageRepository,
)
from helpdesk.billing.domain import UNLIMITED_REMAINING, USAGE_FIELDS, PlanCatalog
from helpdesk.billing.infrastructure.models import SubscriptionModel, UsageRecordModel
from helpdesk.config import SubscriptionStatus, UsageDimension
from helpdesk.core.exceptions import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _columns(dimension: UsageDimension):
    used_name, remaining_name, alert_name = USAGE_FIELDS[UsageDimension(dimension)]
    return (
        getattr(UsageRecordModel, used_name),
        getattr(UsageRecordModel, remaining_name),
        getattr(UsageRecordModel, alert_name),
    )


class SQLAlchemySubscriptionRepository(ISubscriptionRepository):
    """
    SQLAlchemy implementation of the subscription repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_organization(self, organization_id: UUID) -> Optional[SubscriptionModel]:
        stmt = select(SubscriptionModel).where(SubscriptionModel.organization_id == organization_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        organization_id: UUID,
        plan_id: str,
        period_start: datetime,
        period_end: datetime
    ) -> SubscriptionModel:
        model = SubscriptionModel(
            organization_id=organization_id,
            plan_id=plan_id,
            status=SubscriptionStatus.ACTIVE.value,
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=False,
            created_at=period_start,
            updated_at=period_start,
        )
        self._session.add(model)
        await self._session.flush()
        return model

    async def save(self, subscription: SubscriptionModel) -> SubscriptionModel:
        await self._session.flush()
        return subscription

    async def list_expired(self, now: datetime, limit: int = 500) -> List[SubscriptionModel]:
        stmt = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.current_period_end <= now,
                SubscriptionModel.status != SubscriptionStatus.CANCELED.value,
            )
            .order_by(SubscriptionModel.current_period_end)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemyUsageRepository(IUsageRepository):
    """
    SQLAlchemy implementation of the usage record repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    def _current_filter(self, organization_id: UUID):
        return (
            UsageRecordModel.organization_id == organization_id,
            UsageRecordModel.is_current.is_(True),
        )

    async def get_current(self, organization_id: UUID) -> Optional[UsageRecordModel]:
        stmt = (
            select(UsageRecordModel)
            .where(*self._current_filter(organization_id))
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_current(
        self,
        organization_id: UUID,
        period_start: datetime,
        period_end: datetime,
        remaining: Dict[UsageDimension, int]
    ) -> UsageRecordModel:
        await self._session.execute(
            update(UsageRecordModel)
            .where(*self._current_filter(organization_id))
            .values(is_current=False, updated_at=period_start)
            .execution_options(synchronize_session=False)
        )

        model = UsageRecordModel(
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
            is_current=True,
            tickets_created=0,
            messages_created=0,
            storage_used_mb=0,
            api_requests_count=0,
            created_at=period_start,
            updated_at=period_start,
        )
        for dimension, value in remaining.items():
            setattr(model, USAGE_FIELDS[dimension][1], value)

        self._session.add(model)
        await self._session.flush()
        return model

    async def increment(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int,
        now: datetime
    ) -> Optional[UsageRecordModel]:
        used_col, remaining_col, _ = _columns(dimension)
        stmt = (
            update(UsageRecordModel)
            .where(*self._current_filter(organization_id))
            .values({
                used_col: used_col + amount,
                remaining_col: case(
                    (remaining_col >= UNLIMITED_REMAINING, remaining_col),
                    (remaining_col - amount < 0, 0),
                    else_=remaining_col - amount,
                ),
                UsageRecordModel.updated_at: now,
            })
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_current(organization_id)

    async def try_consume(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        amount: int,
        now: datetime
    ) -> Optional[UsageRecordModel]:
        used_col, remaining_col, _ = _columns(dimension)
        stmt = (
            update(UsageRecordModel)
            .where(*self._current_filter(organization_id), remaining_col >= amount)
            .values({
                used_col: used_col + amount,
                remaining_col: case(
                    (remaining_col >= UNLIMITED_REMAINING, remaining_col),
                    else_=remaining_col - amount,
                ),
                UsageRecordModel.updated_at: now,
            })
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_current(organization_id)

    async def set_remaining(
        self,
        record: UsageRecordModel,
        remaining: Dict[UsageDimension, int],
        now: datetime
    ) -> UsageRecordModel:
        for dimension, value in remaining.items():
            setattr(record, USAGE_FIELDS[dimension][1], value)
        record.updated_at = now
        await self._session.flush()
        return record

    async def mark_alert_sent(
        self,
        organization_id: UUID,
        dimension: UsageDimension,
        now: datetime
    ) -> bool:
        _, _, alert_col = _columns(dimension)
        stmt = (
            update(UsageRecordModel)
            .where(*self._current_filter(organization_id), alert_col.is_(None))
            .values({alert_col: now, UsageRecordModel.updated_at: now})
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def history(self, organization_id: UUID, limit: int = 12) -> List[UsageRecordModel]:
        stmt = (
            select(UsageRecordModel)
            .where(UsageRecordModel.organization_id == organization_id)
            .order_by(UsageRecordModel.period_start.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class YAMLPlanCatalogProvider(IPlanCatalogProvider):
    """
    Plan catalog read once from the ``plans`` section of the YAML config.

    The catalog is immutable for the life of the process; edits to the file
    take effect on the next start.
    """

    def __init__(self, path: Optional[Path] = None, catalog: Optional[PlanCatalog] = None):
        self._path = path
        self._catalog = catalog

    def load(self) -> PlanCatalog:
        if self._path is None or not self._path.exists():
            logger.warning("Plan catalog file not found, using built-in plans", extra={"path": str(self._path)})
            self._catalog = PlanCatalog()
            return self._catalog

        with open(self._path, "r") as f:
            data = yaml.safe_load(f) or {}

        plans = data.get("plans")
        try:
            self._catalog = PlanCatalog(plans=plans) if plans else PlanCatalog()
        except ValueError as e:
            raise ConfigurationException(f"Invalid plan catalog: {e}", {"path": str(self._path)}) from e

        logger.info("Plan catalog loaded", extra={"plans": [p.id for p in self._catalog.plans]})
        return self._catalog

    def get_catalog(self) -> PlanCatalog:
        if self._catalog is None:
            return self.load()
        return self._catalog
