"""
SLA Infrastructure Repositories
=================================

Concrete implementations of SLA repository interfaces using SQLAlchemy,
plus the YAML-backed defaults provider.
"""

from pathlib import Path
from typing import List, Optional
from uuid import UUID

import yaml
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import TicketPriority
from helpdesk.core.exceptions import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application.services import ISLADefaultsProvider, ISLAPolicyRepository
from helpdesk.sla.domain import SLADefaults
from helpdesk.sla.infrastructure.models import SLAPolicyModel

logger = get_logger(__name__)


class SQLAlchemySLAPolicyRepository(ISLAPolicyRepository):
    """
    SQLAlchemy implementation of the SLA policy repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list(self, organization_id: UUID) -> List[SLAPolicyModel]:
        stmt = (
            select(SLAPolicyModel)
            .where(SLAPolicyModel.organization_id == organization_id)
            .order_by(SLAPolicyModel.priority, SLAPolicyModel.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_id(self, organization_id: UUID, policy_id: UUID) -> Optional[SLAPolicyModel]:
        stmt = select(SLAPolicyModel).where(
            SLAPolicyModel.id == policy_id,
            SLAPolicyModel.organization_id == organization_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_default_for_priority(
        self,
        organization_id: UUID,
        priority: TicketPriority
    ) -> Optional[SLAPolicyModel]:
        stmt = select(SLAPolicyModel).where(
            SLAPolicyModel.organization_id == organization_id,
            SLAPolicyModel.priority == TicketPriority(priority).value,
            SLAPolicyModel.is_default.is_(True),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, policy: SLAPolicyModel) -> SLAPolicyModel:
        self._session.add(policy)
        await self._session.flush()
        return policy

    async def save(self, policy: SLAPolicyModel) -> SLAPolicyModel:
        await self._session.flush()
        return policy

    async def delete(self, policy: SLAPolicyModel) -> None:
        await self._session.execute(delete(SLAPolicyModel).where(SLAPolicyModel.id == policy.id))
        await self._session.flush()


class YAMLSLADefaultsProvider(ISLADefaultsProvider):
    """
    System SLA defaults read once from the ``sla_defaults`` section of the
    YAML config.

    Expected shape:

        sla_defaults:
          targets:
            high: {first_response_minutes: 240, resolution_minutes: 480}
    """

    def __init__(self, path: Optional[Path] = None, defaults: Optional[SLADefaults] = None):
        self._path = path
        self._defaults = defaults

    def load(self) -> SLADefaults:
        if self._path is None or not self._path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(self._path)})
            self._defaults = SLADefaults()
            return self._defaults

        with open(self._path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            self._defaults = SLADefaults(**(data.get("sla_defaults") or {}))
        except ValueError as e:
            raise ConfigurationException(f"Invalid SLA defaults: {e}", {"path": str(self._path)}) from e

        logger.info("SLA defaults loaded", extra={"path": str(self._path)})
        return self._defaults

    def get_defaults(self) -> SLADefaults:
        if self._defaults is None:
            return self.load()
        return self._defaults
