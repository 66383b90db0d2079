"""
Membership Directory
====================

Read-only view of organization membership. Members are created and
edited by the organization service; this core only looks roles up.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import String, UniqueConstraint, Uuid, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.config import Role
from helpdesk.core.interfaces import IMembershipDirectory, MemberInfo
from helpdesk.infrastructure.database import Base, UTCDateTime, utc_now


class MembershipModel(Base):
    """
    Database model for an organization membership.

    Maps to the 'organization_members' table.
    """
    __tablename__ = "organization_members"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    role: Mapped[Role] = mapped_column(String(20), nullable=False, default=Role.CUSTOMER)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
    )


def _to_member(model: MembershipModel) -> MemberInfo:
    return MemberInfo(
        user_id=model.user_id,
        organization_id=model.organization_id,
        role=Role(model.role),
        display_name=model.display_name,
    )


class SQLAlchemyMembershipDirectory(IMembershipDirectory):
    """Membership lookups against the shared relational store."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_member(self, organization_id: UUID, user_id: UUID) -> Optional[MemberInfo]:
        stmt = select(MembershipModel).where(
            MembershipModel.organization_id == organization_id,
            MembershipModel.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_member(model) if model else None

    async def list_admin_ids(self, organization_id: UUID) -> List[UUID]:
        stmt = (
            select(MembershipModel.user_id)
            .where(
                MembershipModel.organization_id == organization_id,
                MembershipModel.role.in_([Role.ADMIN.value, Role.OWNER.value]),
            )
            .order_by(MembershipModel.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


__all__ = ["MembershipModel", "SQLAlchemyMembershipDirectory"]
