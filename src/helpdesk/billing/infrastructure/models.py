"""
Billing Infrastructure Models
=============================

SQLAlchemy ORM models for subscriptions and usage records.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.config import SubscriptionStatus
from helpdesk.infrastructure.database import Base, UTCDateTime, utc_now


class SubscriptionModel(Base):
    """
    Database model for an organization's plan binding.

    Maps to the 'organization_subscriptions' table. One row per
    organization; cancellation changes the status instead of adding rows.
    """
    __tablename__ = "organization_subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True, index=True)

    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_plan_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[SubscriptionStatus] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE
    )

    current_period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class UsageRecordModel(Base):
    """
    Database model for one organization's usage in one billing period.

    Maps to the 'subscription_usage' table. Exactly one row per organization
    has ``is_current`` set; retired rows stay as history.
    """
    __tablename__ = "subscription_usage"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Running counters
    tickets_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_used_mb: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_requests_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Remaining balance, floored at zero
    tickets_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_remaining_mb: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_requests_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Alert dedupe, one per dimension per period
    ticket_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    message_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    storage_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    api_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index(
            "uq_subscription_usage_current",
            "organization_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index("ix_subscription_usage_org_period", "organization_id", "period_start"),
    )


