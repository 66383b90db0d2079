"""
Ticket Services
===============

Background maintenance over tickets.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from helpdesk.config import TicketStatus, settings
from helpdesk.core.clock import utcnow
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application import IActivityRepository, ITicketRepository, record_activities
from helpdesk.tickets.domain import ActivityDraft, TicketStateMachine

logger = get_logger(__name__)

AUTO_CLOSE_REASON = "auto_closed_after_inactivity"


class TicketAutoCloser:
    """
    Closes tickets left idle in resolved or pending.

    Idle means ``updated_at`` older than the configured number of days
    (7 for resolved, 14 for pending by default).
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        activity_repository: IActivityRepository,
        resolved_days: Optional[int] = None,
        pending_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._tickets = ticket_repository
        self._activities = activity_repository
        self._idle_days = {
            TicketStatus.RESOLVED: resolved_days or settings.auto_close_resolved_days,
            TicketStatus.PENDING: pending_days or settings.auto_close_pending_days,
        }
        self._clock = clock

    async def run(self, limit: int = 200) -> Dict[str, int]:
        """Returns closed counts keyed by the status tickets were closed from."""
        now = self._clock()
        closed: Dict[str, int] = {}

        for status, days in self._idle_days.items():
            count = 0
            for ticket in await self._tickets.list_stale(status, now - timedelta(days=days), limit):
                async with self._tickets.savepoint():
                    draft = TicketStateMachine.transition(ticket, TicketStatus.CLOSED, now)
                    draft = ActivityDraft(draft.action, {**draft.metadata, "reason": AUTO_CLOSE_REASON})
                    await self._tickets.save(ticket)
                    await record_activities(self._activities, ticket, None, [draft], now)
                count += 1
            closed[status.value] = count

        if any(closed.values()):
            logger.info("Stale tickets auto-closed", extra=closed)
        return closed
