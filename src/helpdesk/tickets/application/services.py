"""
Ticket Application Services
===========================

Ticket lifecycle orchestration.

Following SOLID principles:
- Single Responsibility: lifecycle rules live in the state machine; this
  service checks access, charges quota, persists and records activities
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID, uuid4

from helpdesk.billing.application import QuotaEnforcer
from helpdesk.config import (
    ActivityAction,
    MessageType,
    Role,
    TicketStatus,
    UsageDimension,
    settings,
)
from helpdesk.core.clock import utcnow
from helpdesk.core.context import ActorContext
from helpdesk.core.exceptions import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    ResourceNotFoundException,
)
from helpdesk.core.interfaces import IMembershipDirectory
from helpdesk.core.permissions import Capability, has_capability, require_capability
from helpdesk.notifications.application import NotificationFanout
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application import SLAScheduler
from helpdesk.tickets.application.dto import (
    MessageCreateDTO,
    TicketCreateDTO,
    TicketListQuery,
    TicketUpdateDTO,
)
from helpdesk.tickets.domain import ActivityDraft, TicketStateMachine

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: UUID) -> Optional[Any]:
        """Get ticket by ID."""

    @abstractmethod
    async def create(self, **fields: Any) -> Any:
        """Insert a ticket with the next organization-scoped number."""

    @abstractmethod
    async def save(self, ticket: Any) -> Any:
        """Flush changes to a loaded ticket."""

    @abstractmethod
    async def delete(self, ticket: Any) -> None:
        """Erase a ticket with its messages and activities."""

    @abstractmethod
    async def list(
        self,
        organization_id: UUID,
        query: TicketListQuery,
        customer_id: Optional[UUID] = None
    ) -> Tuple[List[Any], int]:
        """Filtered page of tickets and the total match count."""

    @abstractmethod
    async def stats(self, organization_id: UUID) -> Dict[str, Dict[str, int]]:
        """Ticket counts by status, and by priority for open and pending tickets."""

    @abstractmethod
    async def list_stale(self, status: TicketStatus, idle_before: datetime, limit: int = 200) -> List[Any]:
        """Tickets in ``status`` not updated since ``idle_before``."""

    @abstractmethod
    async def list_overdue(self, now: datetime, limit: int = 200) -> List[Any]:
        """Open/pending unanswered tickets whose deadline passed but are not flagged."""

    @abstractmethod
    def savepoint(self) -> AsyncContextManager[Any]:
        """Nested transaction for one unit of a bulk operation."""


class IActivityRepository(ABC):
    """Interface for the append-only activity timeline."""

    @abstractmethod
    async def append(
        self,
        ticket_id: UUID,
        actor_id: Optional[UUID],
        draft: ActivityDraft,
        created_at: datetime
    ) -> Any:
        """Insert one timeline entry."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: UUID, limit: int = 100, offset: int = 0) -> List[Any]:
        """Timeline entries oldest first."""


class IMessageRepository(ABC):
    """Interface for ticket messages."""

    @abstractmethod
    async def add(
        self,
        ticket_id: UUID,
        sender_id: UUID,
        content: str,
        message_type: MessageType,
        created_at: datetime,
        merged_from_ticket_id: Optional[UUID] = None
    ) -> Any:
        """Insert a message."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: UUID, include_internal: bool = True) -> List[Any]:
        """Messages oldest first."""


async def record_activities(
    activities: IActivityRepository,
    ticket: Any,
    actor_id: Optional[UUID],
    drafts: Iterable[Optional[ActivityDraft]],
    now: datetime
) -> List[Any]:
    """Append every non-empty draft to the ticket's timeline."""
    recorded = []
    for draft in drafts:
        if draft is None:
            continue
        recorded.append(await activities.append(ticket.id, actor_id, draft, now))
    return recorded


class TicketService:
    """
    Service for ticket operations.

    Every operation takes the calling actor; organization scoping and
    role checks happen here before any state changes.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        activity_repository: IActivityRepository,
        message_repository: IMessageRepository,
        quota: QuotaEnforcer,
        sla: SLAScheduler,
        notifier: NotificationFanout,
        directory: IMembershipDirectory,
        strict_quota: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._tickets = ticket_repository
        self._activities = activity_repository
        self._messages = message_repository
        self._quota = quota
        self._sla = sla
        self._notifier = notifier
        self._directory = directory
        self._strict_quota = settings.strict_quota_enforcement if strict_quota is None else strict_quota
        self._clock = clock

    @property
    def repository(self) -> ITicketRepository:
        return self._tickets

    @property
    def notifier(self) -> NotificationFanout:
        return self._notifier

    # ----- helpers -----

    @staticmethod
    def check_access(actor: ActorContext, ticket: Any) -> None:
        """
        Raises:
            ForbiddenException: Other organization, or a customer's foreign ticket
        """
        if ticket.organization_id != actor.organization_id:
            raise ForbiddenException("Ticket belongs to another organization")
        if actor.is_customer and ticket.customer_id != actor.actor_id:
            raise ForbiddenException("You do not have access to this ticket")

    async def _load(self, actor: ActorContext, ticket_id: UUID) -> Any:
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        self.check_access(actor, ticket)
        return ticket

    async def _record(self, ticket: Any, actor_id: Optional[UUID], drafts: Iterable[Optional[ActivityDraft]]) -> List[Any]:
        return await record_activities(self._activities, ticket, actor_id, drafts, self._clock())

    async def _precheck(self, organization_id: UUID, dimension: UsageDimension) -> None:
        # Strict mode reserves up front; a failure later in the request rolls it back
        if self._strict_quota:
            await self._quota.reserve(organization_id, dimension)
        else:
            await self._quota.enforce(organization_id, dimension)

    async def _settle(self, organization_id: UUID, dimension: UsageDimension) -> None:
        if not self._strict_quota:
            await self._quota.consume(organization_id, dimension)

    async def _notify_status(self, ticket: Any, actor_id: Optional[UUID], drafts: Iterable[Optional[ActivityDraft]]) -> None:
        for draft in drafts:
            if draft is None:
                continue
            if draft.action == ActivityAction.STATUS_CHANGED:
                to_status = draft.metadata["to_status"]
            elif draft.action == ActivityAction.REOPENED:
                to_status = TicketStatus.OPEN.value
            else:
                continue
            await self._notifier.notify_status_change(
                ticket, actor_id, draft.metadata["from_status"], to_status
            )

    async def _reopen(self, ticket: Any, now: datetime) -> ActivityDraft:
        draft = TicketStateMachine.reopen(ticket, now)
        await self._sla.rearm(ticket)
        return draft

    async def _change_status(self, actor: ActorContext, ticket: Any, status: str, now: datetime) -> ActivityDraft:
        # Closed to open is a reopen whichever endpoint asked for it
        if TicketStatus(status) == TicketStatus.OPEN and TicketStatus(ticket.status) == TicketStatus.CLOSED:
            require_capability(actor, Capability.REOPEN_TICKET)
            return await self._reopen(ticket, now)
        return TicketStateMachine.transition(ticket, status, now)

    # ----- commands -----

    async def create(self, actor: ActorContext, data: TicketCreateDTO) -> Any:
        """
        Open a ticket, charge the tickets quota and arm its SLA check.

        Raises:
            ForbiddenException: Role may not create tickets
            LimitExceededException: Tickets quota exhausted
        """
        require_capability(actor, Capability.CREATE_TICKET)
        organization_id = actor.organization_id
        await self._precheck(organization_id, UsageDimension.TICKETS)

        now = self._clock()
        customer_id = data.customer_id if (actor.is_staff and data.customer_id) else actor.actor_id

        ticket = await self._tickets.create(
            id=uuid4(),
            organization_id=organization_id,
            title=data.title,
            description=data.description,
            status=TicketStatus.OPEN.value,
            priority=data.priority,
            channel=data.channel,
            tags=list(data.tags),
            category_id=data.category_id,
            customer_id=customer_id,
            sla_breached=False,
            created_at=now,
            updated_at=now,
        )
        await self._sla.arm(ticket, now)
        await self._tickets.save(ticket)

        await self._record(ticket, actor.actor_id, [ActivityDraft(
            ActivityAction.CREATED,
            {"number": ticket.number, "priority": ticket.priority, "channel": ticket.channel},
        )])
        await self._settle(organization_id, UsageDimension.TICKETS)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": str(ticket.id),
                "organization_id": str(organization_id),
                "number": ticket.number,
                "priority": ticket.priority,
            }
        )
        return ticket

    async def update(self, actor: ActorContext, ticket_id: UUID, data: TicketUpdateDTO) -> Any:
        """
        Apply the fields that were sent. Each changed status, priority or
        tag set appends one activity.

        Raises:
            BadRequestException: Illegal status transition
        """
        require_capability(actor, Capability.UPDATE_TICKET)
        ticket = await self._load(actor, ticket_id)
        now = self._clock()
        fields = data.model_dump(exclude_unset=True)

        for name in ("title", "description", "category_id"):
            if name in fields and fields[name] is not None and getattr(ticket, name) != fields[name]:
                setattr(ticket, name, fields[name])
                ticket.updated_at = now

        drafts: List[Optional[ActivityDraft]] = []
        if fields.get("priority"):
            drafts.append(TicketStateMachine.change_priority(ticket, fields["priority"], now))
        status_draft = None
        if fields.get("status"):
            status_draft = await self._change_status(actor, ticket, fields["status"], now)
            drafts.append(status_draft)
        if data.add_tags or data.remove_tags:
            drafts.append(TicketStateMachine.update_tags(ticket, now, data.add_tags, data.remove_tags))

        await self._tickets.save(ticket)
        await self._record(ticket, actor.actor_id, drafts)
        await self._notify_status(ticket, actor.actor_id, [status_draft])
        return ticket

    async def assign(self, actor: ActorContext, ticket_id: UUID, assignee_id: Optional[UUID]) -> Any:
        """
        Assign to an agent of the organization, or unassign with None.

        Raises:
            ResourceNotFoundException: Assignee is not an agent-or-above member
        """
        require_capability(actor, Capability.ASSIGN_TICKET)
        ticket = await self._load(actor, ticket_id)

        assignee_name = None
        if assignee_id is not None:
            member = await self._directory.get_member(ticket.organization_id, assignee_id)
            if member is None or not member.role.at_least(Role.AGENT):
                raise ResourceNotFoundException("Assignee", str(assignee_id))
            assignee_name = member.display_name

        previous = ticket.assignee_id
        drafts = TicketStateMachine.assign(ticket, assignee_id, self._clock(), assignee_name)
        if not drafts:
            return ticket

        await self._tickets.save(ticket)
        await self._record(ticket, actor.actor_id, drafts)
        if assignee_id is not None and assignee_id != previous:
            await self._notifier.notify_assignment(ticket, actor.actor_id)
        return ticket

    async def close(self, actor: ActorContext, ticket_id: UUID, reason: Optional[str] = None) -> Any:
        """
        Raises:
            ForbiddenException: Already closed
        """
        require_capability(actor, Capability.CLOSE_TICKET)
        ticket = await self._load(actor, ticket_id)
        draft = TicketStateMachine.close(ticket, self._clock(), reason)

        await self._tickets.save(ticket)
        await self._record(ticket, actor.actor_id, [draft])
        await self._notifier.notify_status_change(
            ticket, actor.actor_id, draft.metadata["from_status"], TicketStatus.CLOSED.value
        )
        return ticket

    async def reopen(self, actor: ActorContext, ticket_id: UUID) -> Any:
        """
        Reopen a closed ticket and re-arm its SLA from now.

        Raises:
            ForbiddenException: Ticket is not closed
        """
        require_capability(actor, Capability.REOPEN_TICKET)
        ticket = await self._load(actor, ticket_id)
        draft = await self._reopen(ticket, self._clock())

        await self._tickets.save(ticket)
        await self._record(ticket, actor.actor_id, [draft])
        await self._notify_status(ticket, actor.actor_id, [draft])
        return ticket

    async def add_message(self, actor: ActorContext, ticket_id: UUID, data: MessageCreateDTO) -> Any:
        """
        Post a message. A staff reply stamps the first response.

        Raises:
            ForbiddenException: Customer posting an internal note
            LimitExceededException: Messages quota exhausted
        """
        message_type = MessageType(data.message_type)
        if message_type == MessageType.INTERNAL_NOTE and not has_capability(actor.role, Capability.POST_INTERNAL_NOTE):
            raise ForbiddenException("Customers cannot create internal notes")
        if message_type == MessageType.SYSTEM:
            raise ForbiddenException("System messages cannot be posted")
        require_capability(actor, Capability.POST_REPLY)

        ticket = await self._load(actor, ticket_id)
        await self._precheck(ticket.organization_id, UsageDimension.MESSAGES)

        now = self._clock()
        message = await self._messages.add(ticket.id, actor.actor_id, data.content, message_type, now)
        if actor.is_staff and message_type == MessageType.REPLY:
            TicketStateMachine.record_first_response(ticket, now)
        ticket.updated_at = now

        await self._tickets.save(ticket)
        await self._record(ticket, actor.actor_id, [ActivityDraft(
            ActivityAction.MESSAGE_ADDED,
            {"message_id": str(message.id), "message_type": message_type.value},
        )])
        await self._settle(ticket.organization_id, UsageDimension.MESSAGES)
        return message

    async def merge_into(self, actor: ActorContext, primary: Any, secondary_id: UUID, merge_comments: bool) -> int:
        """
        Close one secondary into ``primary``, optionally copying its messages.

        Returns the number of messages copied. Copies keep the original
        sender and timestamp and are not charged to the messages quota.

        Raises:
            BadRequestException: Secondary is the primary
            ConflictException: Secondary already merged
        """
        if secondary_id == primary.id:
            raise BadRequestException("Cannot merge a ticket into itself")
        secondary = await self._load(actor, secondary_id)
        if secondary.merged_into_id is not None:
            raise ConflictException(
                "Ticket was already merged",
                {"merged_into_id": str(secondary.merged_into_id)}
            )

        now = self._clock()
        copied = 0
        if merge_comments:
            for message in await self._messages.list_for_ticket(secondary.id, include_internal=True):
                await self._messages.add(
                    primary.id,
                    message.sender_id,
                    message.content,
                    MessageType(message.message_type),
                    message.created_at,
                    merged_from_ticket_id=secondary.id,
                )
                copied += 1

        draft = TicketStateMachine.close_as_merged(secondary, primary, now)
        await self._tickets.save(secondary)
        await self._record(secondary, actor.actor_id, [draft])

        if copied:
            primary.updated_at = now
            await self._tickets.save(primary)
            await self._record(primary, actor.actor_id, [ActivityDraft(
                ActivityAction.MESSAGE_ADDED,
                {
                    "merged_from_ticket_id": str(secondary.id),
                    "merged_from_number": secondary.number,
                    "messages_copied": copied,
                },
            )])
        return copied

    async def delete_permanently(self, actor: ActorContext, ticket_id: UUID) -> None:
        require_capability(actor, Capability.BULK_DELETE)
        ticket = await self._load(actor, ticket_id)
        await self._tickets.delete(ticket)
        logger.info(
            "Ticket deleted",
            extra={"ticket_id": str(ticket_id), "actor_id": str(actor.actor_id)}
        )

    # ----- queries -----

    async def get(self, actor: ActorContext, ticket_id: UUID) -> Any:
        require_capability(actor, Capability.VIEW_OWN_TICKETS)
        return await self._load(actor, ticket_id)

    async def list(self, actor: ActorContext, query: TicketListQuery) -> Tuple[List[Any], int]:
        """Customers only ever see their own tickets."""
        require_capability(actor, Capability.VIEW_OWN_TICKETS)
        customer_id = actor.actor_id if actor.is_customer else query.customer_id
        return await self._tickets.list(actor.organization_id, query, customer_id)

    async def list_messages(self, actor: ActorContext, ticket_id: UUID) -> List[Any]:
        """Internal notes are hidden from customers."""
        ticket = await self._load(actor, ticket_id)
        return await self._messages.list_for_ticket(ticket.id, include_internal=actor.is_staff)

    async def list_activities(self, actor: ActorContext, ticket_id: UUID, limit: int = 100, offset: int = 0) -> List[Any]:
        ticket = await self._load(actor, ticket_id)
        return await self._activities.list_for_ticket(ticket.id, limit, offset)

    async def stats(self, actor: ActorContext) -> Dict[str, Any]:
        require_capability(actor, Capability.VIEW_ORG_TICKETS)
        counts = await self._tickets.stats(actor.organization_id)
        return {
            "by_status": counts["by_status"],
            "by_priority": counts["by_priority"],
            "total": sum(counts["by_status"].values()),
        }
