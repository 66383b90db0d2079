"""
Ticket Infrastructure Repositories
==================================

Concrete implementations of ticket repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
tickets, activities and messages from the database.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, case, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import (
    OPEN_STATUSES,
    MessageType,
    TicketPriority,
    TicketStatus,
)
from helpdesk.core.exceptions import ConflictException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application.dto import TicketListQuery
from helpdesk.tickets.application.services import (
    IActivityRepository,
    IMessageRepository,
    ITicketRepository,
)
from helpdesk.tickets.domain import ActivityDraft
from helpdesk.tickets.infrastructure.models import ActivityModel, MessageModel, TicketModel

logger = get_logger(__name__)

NUMBER_ATTEMPTS = 3

OPEN_VALUES = frozenset(s.value for s in OPEN_STATUSES)

PRIORITY_RANK = {
    TicketPriority.LOW.value: 1,
    TicketPriority.MEDIUM.value: 2,
    TicketPriority.HIGH.value: 3,
    TicketPriority.URGENT.value: 4,
}


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, ticket_id: UUID) -> Optional[TicketModel]:
        stmt = select(TicketModel).where(TicketModel.id == ticket_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def next_number(self, organization_id: UUID) -> int:
        stmt = select(func.max(TicketModel.number)).where(TicketModel.organization_id == organization_id)
        result = await self._session.execute(stmt)
        return (result.scalar() or 0) + 1

    async def create(self, **fields: Any) -> TicketModel:
        """
        Insert with MAX(number)+1.

        Two concurrent creates can pick the same number; the unique
        constraint rejects the loser, which retries inside a savepoint.

        Raises:
            ConflictException: No free number after a few attempts
        """
        organization_id = fields["organization_id"]
        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            ticket = TicketModel(number=await self.next_number(organization_id), **fields)
            try:
                async with self._session.begin_nested():
                    self._session.add(ticket)
                    await self._session.flush()
                return ticket
            except IntegrityError:
                logger.warning(
                    "Ticket number collision",
                    extra={"organization_id": str(organization_id), "attempt": attempt}
                )
                if ticket in self._session:
                    self._session.expunge(ticket)

        raise ConflictException(
            "Could not allocate a ticket number, please retry",
            {"organization_id": str(organization_id)}
        )

    async def save(self, ticket: TicketModel) -> TicketModel:
        await self._session.flush()
        return ticket

    async def delete(self, ticket: TicketModel) -> None:
        # Explicit child deletes; SQLite does not enforce the cascades
        await self._session.execute(delete(MessageModel).where(MessageModel.ticket_id == ticket.id))
        await self._session.execute(delete(ActivityModel).where(ActivityModel.ticket_id == ticket.id))
        await self._session.delete(ticket)
        await self._session.flush()

    async def list(
        self,
        organization_id: UUID,
        query: TicketListQuery,
        customer_id: Optional[UUID] = None
    ) -> Tuple[List[TicketModel], int]:
        conditions = [TicketModel.organization_id == organization_id]

        if customer_id is not None:
            conditions.append(TicketModel.customer_id == customer_id)
        if query.status:
            conditions.append(TicketModel.status.in_(query.status))
        if query.priority:
            conditions.append(TicketModel.priority == query.priority)
        if query.assignee_id == "unassigned":
            conditions.append(TicketModel.assignee_id.is_(None))
        elif query.assignee_id:
            conditions.append(TicketModel.assignee_id == UUID(query.assignee_id))
        if query.search:
            pattern = f"%{query.search}%"
            matches = [TicketModel.title.ilike(pattern), TicketModel.description.ilike(pattern)]
            if query.search.lstrip("#").isdigit():
                matches.append(TicketModel.number == int(query.search.lstrip("#")))
            conditions.append(or_(*matches))

        count_stmt = select(func.count()).select_from(TicketModel).where(and_(*conditions))
        total = (await self._session.execute(count_stmt)).scalar() or 0

        if query.sort_by == "priority":
            sort_column = case(PRIORITY_RANK, value=TicketModel.priority, else_=0)
        else:
            sort_column = getattr(TicketModel, query.sort_by)
        order = sort_column.asc() if query.sort_order == "asc" else sort_column.desc()

        stmt = (
            select(TicketModel)
            .where(and_(*conditions))
            .order_by(order, TicketModel.number.desc())
            .limit(query.limit)
            .offset((query.page - 1) * query.limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all()), total

    async def stats(self, organization_id: UUID) -> Dict[str, Dict[str, int]]:
        by_status = {status.value: 0 for status in TicketStatus}
        by_priority = {priority.value: 0 for priority in TicketPriority}

        stmt = (
            select(TicketModel.status, TicketModel.priority, func.count())
            .where(TicketModel.organization_id == organization_id)
            .group_by(TicketModel.status, TicketModel.priority)
        )
        for status, priority, count in (await self._session.execute(stmt)).all():
            by_status[status] = by_status.get(status, 0) + count
            if status in OPEN_VALUES:
                by_priority[priority] = by_priority.get(priority, 0) + count

        return {"by_status": by_status, "by_priority": by_priority}

    async def list_stale(self, status: TicketStatus, idle_before: datetime, limit: int = 200) -> List[TicketModel]:
        stmt = (
            select(TicketModel)
            .where(
                and_(
                    TicketModel.status == TicketStatus(status).value,
                    TicketModel.updated_at < idle_before,
                )
            )
            .order_by(TicketModel.updated_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_overdue(self, now: datetime, limit: int = 200) -> List[TicketModel]:
        stmt = (
            select(TicketModel)
            .where(
                and_(
                    TicketModel.status.in_(OPEN_VALUES),
                    TicketModel.sla_breached.is_(False),
                    TicketModel.first_response_at.is_(None),
                    TicketModel.sla_deadline.is_not(None),
                    TicketModel.sla_deadline < now,
                )
            )
            .order_by(TicketModel.sla_deadline)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    def savepoint(self):
        return self._session.begin_nested()


class SQLAlchemyActivityRepository(IActivityRepository):
    """
    SQLAlchemy implementation of the activity timeline.

    Insert-only: there is no update or delete here.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(
        self,
        ticket_id: UUID,
        actor_id: Optional[UUID],
        draft: ActivityDraft,
        created_at: datetime
    ) -> ActivityModel:
        seq_stmt = select(func.max(ActivityModel.sequence)).where(ActivityModel.ticket_id == ticket_id)
        sequence = ((await self._session.execute(seq_stmt)).scalar() or 0) + 1

        activity = ActivityModel(
            ticket_id=ticket_id,
            sequence=sequence,
            actor_id=actor_id,
            action=draft.action.value,
            details=dict(draft.metadata),
            created_at=created_at,
        )
        self._session.add(activity)
        await self._session.flush()
        return activity

    async def list_for_ticket(self, ticket_id: UUID, limit: int = 100, offset: int = 0) -> List[ActivityModel]:
        stmt = (
            select(ActivityModel)
            .where(ActivityModel.ticket_id == ticket_id)
            .order_by(ActivityModel.sequence)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemyMessageRepository(IMessageRepository):
    """SQLAlchemy implementation of ticket messages."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(
        self,
        ticket_id: UUID,
        sender_id: UUID,
        content: str,
        message_type: MessageType,
        created_at: datetime,
        merged_from_ticket_id: Optional[UUID] = None
    ) -> MessageModel:
        message = MessageModel(
            ticket_id=ticket_id,
            sender_id=sender_id,
            content=content,
            message_type=MessageType(message_type).value,
            merged_from_ticket_id=merged_from_ticket_id,
            created_at=created_at,
        )
        self._session.add(message)
        await self._session.flush()
        return message

    async def list_for_ticket(self, ticket_id: UUID, include_internal: bool = True) -> List[MessageModel]:
        stmt = select(MessageModel).where(MessageModel.ticket_id == ticket_id)
        if not include_internal:
            stmt = stmt.where(MessageModel.message_type != MessageType.INTERNAL_NOTE.value)
        stmt = stmt.order_by(MessageModel.created_at, MessageModel.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
