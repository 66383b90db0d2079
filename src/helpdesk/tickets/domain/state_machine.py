"""
Ticket State Machine
====================

Status, priority, assignment and tag transitions.

Each operation mutates the ticket object it is given and returns the
activity drafts describing what changed. Nothing here touches storage; the
application service persists the ticket and appends the drafts.

    open     -> pending, resolved, closed
    pending  -> open, resolved, closed
    resolved -> open, closed
    closed   -> open
"""

from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID

from helpdesk.config import ActivityAction, TicketPriority, TicketStatus
from helpdesk.core.exceptions import BadRequestException, ForbiddenException
from helpdesk.sla.domain import SLACalculator
from helpdesk.tickets.domain.entities import ActivityDraft

TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({TicketStatus.PENDING, TicketStatus.RESOLVED, TicketStatus.CLOSED}),
    TicketStatus.PENDING: frozenset({TicketStatus.OPEN, TicketStatus.RESOLVED, TicketStatus.CLOSED}),
    TicketStatus.RESOLVED: frozenset({TicketStatus.OPEN, TicketStatus.CLOSED}),
    TicketStatus.CLOSED: frozenset({TicketStatus.OPEN}),
}


def _str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class TicketStateMachine:
    """
    Pure transition rules for tickets.

    Stateless utility class; all lifecycle rules live here so single-ticket
    operations, bulk operations and background sweeps behave the same.
    """

    @staticmethod
    def can_transition(from_status: TicketStatus, to_status: TicketStatus) -> bool:
        return TicketStatus(to_status) in TRANSITIONS[TicketStatus(from_status)]

    @staticmethod
    def _enter(ticket: Any, to_status: TicketStatus, now: datetime) -> None:
        ticket.status = to_status.value
        if to_status == TicketStatus.RESOLVED and ticket.resolved_at is None:
            ticket.resolved_at = now
        elif to_status == TicketStatus.CLOSED and ticket.closed_at is None:
            ticket.closed_at = now
        elif to_status == TicketStatus.OPEN:
            ticket.closed_at = None
            ticket.resolved_at = None
        ticket.updated_at = now

    @staticmethod
    def transition(ticket: Any, to_status: TicketStatus, now: datetime) -> Optional[ActivityDraft]:
        """
        Move the ticket to ``to_status``.

        Returns None when the ticket is already there.

        Raises:
            BadRequestException: Transition not in the table
        """
        to_status = TicketStatus(to_status)
        from_status = TicketStatus(ticket.status)
        if from_status == to_status:
            return None
        if not TicketStateMachine.can_transition(from_status, to_status):
            raise BadRequestException(
                f"Cannot change ticket status from {from_status.value} to {to_status.value}",
                {"from_status": from_status.value, "to_status": to_status.value}
            )

        TicketStateMachine._enter(ticket, to_status, now)
        return ActivityDraft(
            ActivityAction.STATUS_CHANGED,
            {"from_status": from_status.value, "to_status": to_status.value},
        )

    @staticmethod
    def change_priority(ticket: Any, priority: TicketPriority, now: datetime) -> Optional[ActivityDraft]:
        priority = TicketPriority(priority)
        previous = TicketPriority(ticket.priority)
        if previous == priority:
            return None
        ticket.priority = priority.value
        ticket.updated_at = now
        return ActivityDraft(
            ActivityAction.PRIORITY_CHANGED,
            {"from_priority": previous.value, "to_priority": priority.value},
        )

    @staticmethod
    def assign(
        ticket: Any,
        assignee_id: Optional[UUID],
        now: datetime,
        assignee_name: Optional[str] = None
    ) -> List[ActivityDraft]:
        """
        Set or clear the assignee.

        Assigning an open ticket moves it to pending; unassigning a pending
        ticket moves it back to open. Other statuses are left alone.
        """
        previous = ticket.assignee_id
        if previous == assignee_id:
            return []

        ticket.assignee_id = assignee_id
        ticket.updated_at = now
        drafts: List[ActivityDraft] = []

        if assignee_id is not None:
            drafts.append(ActivityDraft(
                ActivityAction.ASSIGNED,
                {
                    "assignee_id": str(assignee_id),
                    "assignee_name": assignee_name,
                    "previous_assignee_id": _str(previous),
                },
            ))
            if TicketStatus(ticket.status) == TicketStatus.OPEN:
                drafts.append(TicketStateMachine.transition(ticket, TicketStatus.PENDING, now))
        else:
            drafts.append(ActivityDraft(
                ActivityAction.UNASSIGNED,
                {"previous_assignee_id": _str(previous)},
            ))
            if TicketStatus(ticket.status) == TicketStatus.PENDING:
                drafts.append(TicketStateMachine.transition(ticket, TicketStatus.OPEN, now))

        return drafts

    @staticmethod
    def update_tags(
        ticket: Any,
        now: datetime,
        add: Iterable[str] = (),
        remove: Iterable[str] = ()
    ) -> Optional[ActivityDraft]:
        current = list(ticket.tags or [])
        removed = [tag for tag in dict.fromkeys(remove) if tag in current]
        kept = [tag for tag in current if tag not in removed]
        added = [tag for tag in dict.fromkeys(add) if tag not in kept]
        if not added and not removed:
            return None

        ticket.tags = kept + added
        ticket.updated_at = now
        return ActivityDraft(ActivityAction.TAGGED, {"added": added, "removed": removed})

    @staticmethod
    def close(ticket: Any, now: datetime, reason: Optional[str] = None) -> ActivityDraft:
        """
        Raises:
            ForbiddenException: Ticket is already closed
        """
        from_status = TicketStatus(ticket.status)
        if from_status == TicketStatus.CLOSED:
            raise ForbiddenException("Ticket is already closed")

        TicketStateMachine._enter(ticket, TicketStatus.CLOSED, now)
        metadata = {"from_status": from_status.value}
        if reason:
            metadata["reason"] = reason
        return ActivityDraft(ActivityAction.CLOSED, metadata)

    @staticmethod
    def reopen(ticket: Any, now: datetime) -> ActivityDraft:
        """
        Reopen a closed ticket and clear its breach flag.

        The caller re-arms the SLA deadline from ``now``.

        Raises:
            ForbiddenException: Ticket is not closed
        """
        if TicketStatus(ticket.status) != TicketStatus.CLOSED:
            raise ForbiddenException("Only closed tickets can be reopened")

        was_breached = bool(ticket.sla_breached)
        TicketStateMachine._enter(ticket, TicketStatus.OPEN, now)
        ticket.sla_breached = False
        ticket.first_response_at = None
        return ActivityDraft(
            ActivityAction.REOPENED,
            {"from_status": TicketStatus.CLOSED.value, "sla_breach_cleared": was_breached},
        )

    @staticmethod
    def close_as_merged(ticket: Any, primary: Any, now: datetime) -> ActivityDraft:
        """Close a merge secondary whatever its status and point it at the primary."""
        from_status = TicketStatus(ticket.status)
        TicketStateMachine._enter(ticket, TicketStatus.CLOSED, now)
        ticket.merged_into_id = primary.id
        return ActivityDraft(
            ActivityAction.CLOSED,
            {
                "from_status": from_status.value,
                "reason": "merged",
                "merged_into_id": str(primary.id),
                "merged_into_number": primary.number,
            },
        )

    @staticmethod
    def record_first_response(ticket: Any, now: datetime) -> bool:
        if ticket.first_response_at is not None:
            return False
        ticket.first_response_at = now
        ticket.updated_at = now
        return True

    @staticmethod
    def mark_breached(ticket: Any, now: datetime) -> Optional[ActivityDraft]:
        """
        Flag an SLA breach if the persisted state still calls for one.

        The flag is one-way, so a second call on the same ticket returns
        None and nothing is logged twice.
        """
        if not SLACalculator.is_breached(
            ticket.status, ticket.sla_breached, ticket.first_response_at, ticket.sla_deadline, now
        ):
            return None

        ticket.sla_breached = True
        ticket.updated_at = now
        return ActivityDraft(
            ActivityAction.SLA_BREACHED,
            {
                "reason": "first_response_deadline_passed",
                "deadline": ticket.sla_deadline.isoformat(),
            },
        )
