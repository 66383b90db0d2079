"""
SLA Services
============

Breach evaluation for armed deadlines.

The deferred ``sla.check`` task and the periodic overdue sweep both end up
in ``SLABreachChecker.check``, which re-reads the ticket and decides from
persisted state alone. Firing twice, firing late or firing after the
ticket was answered is therefore harmless.
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from helpdesk.core.clock import utcnow
from helpdesk.notifications.application import NotificationFanout
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application import IActivityRepository, ITicketRepository, record_activities
from helpdesk.tickets.domain import TicketStateMachine

logger = get_logger(__name__)


class SLABreachChecker:
    """
    Flags breached tickets and notifies the assignee and admins.

    This service:
    1. Reloads the ticket (gone means nothing to do)
    2. Re-derives the breach decision from status, flag, first response and deadline
    3. Sets the flag, appends one sla_breached activity
    4. Fans out one notification per recipient
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        activity_repository: IActivityRepository,
        notifier: NotificationFanout,
        clock: Callable[[], datetime] = utcnow
    ):
        self._tickets = ticket_repository
        self._activities = activity_repository
        self._notifier = notifier
        self._clock = clock

    async def check(self, ticket_id: UUID) -> bool:
        """Returns True when this call recorded a breach."""
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            logger.debug("SLA check for missing ticket", extra={"ticket_id": str(ticket_id)})
            return False

        now = self._clock()
        draft = TicketStateMachine.mark_breached(ticket, now)
        if draft is None:
            return False

        await self._tickets.save(ticket)
        await record_activities(self._activities, ticket, None, [draft], now)
        await self._notifier.notify_sla_breach(ticket)

        logger.warning(
            "SLA breached",
            extra={
                "ticket_id": str(ticket.id),
                "organization_id": str(ticket.organization_id),
                "number": ticket.number,
                "deadline": ticket.sla_deadline.isoformat(),
            }
        )
        return True

    async def handle_task(self, payload: dict) -> None:
        """Deferred task body for ``sla.check``."""
        await self.check(UUID(str(payload["ticket_id"])))

    async def sweep_overdue(self, limit: int = 200, now: Optional[datetime] = None) -> int:
        """
        Safety net for checks that never fired (lost task store, downtime
        past the misfire grace). Returns the number of breaches recorded.
        """
        breached = 0
        for ticket in await self._tickets.list_overdue(now or self._clock(), limit):
            async with self._tickets.savepoint():
                if await self.check(ticket.id):
                    breached += 1

        if breached:
            logger.info("SLA sweep recorded breaches", extra={"count": breached})
        return breached
