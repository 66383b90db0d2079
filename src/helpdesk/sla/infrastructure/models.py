"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.config import TicketPriority
from helpdesk.infrastructure.database import Base, UTCDateTime, utc_now


class SLAPolicyModel(Base):
    """
    Database model for an organization's SLA policy.

    Maps to the 'sla_policies' table. At most one default policy exists per
    (organization, priority).
    """
    __tablename__ = "sla_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[TicketPriority] = mapped_column(String(20), nullable=False)

    # Minutes
    first_response_time: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time: Mapped[int] = mapped_column(Integer, nullable=False)

    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index(
            "uq_sla_policies_default_per_priority",
            "organization_id",
            "priority",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )
