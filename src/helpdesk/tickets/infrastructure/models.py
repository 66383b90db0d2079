"""
Ticket Infrastructure Models
============================

SQLAlchemy ORM models for tickets, their activity timeline and messages.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.config import (
    ActivityAction,
    MessageType,
    TicketChannel,
    TicketPriority,
    TicketStatus,
)
from helpdesk.infrastructure.database import Base, JSONType, UTCDateTime, utc_now


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Organization-scoped sequential number
    number: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[TicketStatus] = mapped_column(String(20), nullable=False, default=TicketStatus.OPEN)
    priority: Mapped[TicketPriority] = mapped_column(String(20), nullable=False, default=TicketPriority.MEDIUM)
    channel: Mapped[TicketChannel] = mapped_column(String(20), nullable=False, default=TicketChannel.WEB)
    tags: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    category_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    customer_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    assignee_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)

    # SLA tracking
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Set on merge secondaries
    merged_into_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("organization_id", "number", name="uq_tickets_org_number"),
        Index("ix_tickets_org_status", "organization_id", "status"),
        Index("ix_tickets_status_deadline", "status", "sla_deadline"),
    )


class ActivityModel(Base):
    """
    Database model for one audit timeline entry.

    Maps to the 'ticket_activities' table. Rows are only ever inserted.
    """
    __tablename__ = "ticket_activities"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    # Per-ticket ordinal; entries written in the same instant keep their order
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    actor_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    action: Mapped[ActivityAction] = mapped_column(String(40), nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_ticket_activities_ticket_sequence", "ticket_id", "sequence"),
    )


class MessageModel(Base):
    """
    Database model for a ticket message.

    Maps to the 'ticket_messages' table.
    """
    __tablename__ = "ticket_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(String(20), nullable=False, default=MessageType.REPLY)
    merged_from_ticket_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_ticket_messages_ticket_created", "ticket_id", "created_at"),
    )
