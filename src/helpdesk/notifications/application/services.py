"""
Notification Application Services
=================================

Fan-out of domain events into per-recipient delivery tasks.

Delivery itself happens later in a deferred task so a slow or failing
transport never blocks the request that raised the event, and a failed
delivery is retried by the task queue.

Inside a unit of work the deliveries are held in a ``NotificationOutbox``
and only reach the task queue once the database commit succeeded; a
rolled back change (a whole request, or one bulk item's savepoint) never
notifies anybody.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, ContextManager, Iterable, Iterator, List, Optional
from uuid import UUID

from helpdesk.config import NotificationEvent
from helpdesk.core.clock import utcnow
from helpdesk.core.interfaces import IDeferredTaskQueue, IMembershipDirectory
from helpdesk.notifications.domain import Notification
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

DELIVER_TASK = "notifications.deliver"


class INotificationSink(ABC):
    """Outbound transport for a single notification."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver the notification or raise so the task is retried."""


def unique_recipients(candidates: Iterable[Optional[UUID]], exclude: Optional[UUID] = None) -> List[UUID]:
    """Drop empty and excluded ids, keep first occurrence order."""
    seen = set()
    recipients = []
    for user_id in candidates:
        if user_id is None or user_id == exclude or user_id in seen:
            continue
        seen.add(user_id)
        recipients.append(user_id)
    return recipients


@dataclass(frozen=True)
class HeldDelivery:
    dedupe_key: str
    payload: dict
    fire_at: datetime


async def schedule_delivery(task_queue: IDeferredTaskQueue, delivery: HeldDelivery) -> bool:
    task_id = await task_queue.schedule(
        DELIVER_TASK,
        delivery.payload,
        delivery.fire_at,
        dedupe_key=delivery.dedupe_key,
    )
    return task_id is not None


class NotificationOutbox:
    """
    Deliveries raised inside one unit of work, held until it commits.

    ``flush`` after the commit hands them to the task queue and ``discard``
    after a rollback drops them. ``scope`` wraps a nested part of the work
    (one bulk item's savepoint): if the block raises, only the deliveries
    it held are dropped.
    """

    def __init__(self, task_queue: IDeferredTaskQueue):
        self._task_queue = task_queue
        self._held: List[HeldDelivery] = []

    def __len__(self) -> int:
        return len(self._held)

    def hold(self, delivery: HeldDelivery) -> bool:
        """False when a delivery with the same key is already held."""
        if any(held.dedupe_key == delivery.dedupe_key for held in self._held):
            return False
        self._held.append(delivery)
        return True

    def discard(self, mark: int = 0) -> None:
        del self._held[mark:]

    @contextmanager
    def scope(self) -> Iterator[None]:
        mark = len(self._held)
        try:
            yield
        except Exception:
            self.discard(mark)
            raise

    async def flush(self) -> int:
        """Schedule every held delivery; returns how many were new to the queue."""
        held, self._held = self._held, []
        scheduled = 0
        for delivery in held:
            if await schedule_delivery(self._task_queue, delivery):
                scheduled += 1

        if held:
            logger.info(
                "Held notifications released",
                extra={"held": len(held), "scheduled": scheduled}
            )
        return scheduled


class NotificationFanout:
    """
    Turns breach, assignment, status and usage events into delivery tasks.

    Each task id is derived from (event, event key, recipient) so replaying
    the same event while its deliveries are still queued adds nothing.

    With an outbox the deliveries wait there for the commit; without one
    they are scheduled right away.
    """

    def __init__(
        self,
        task_queue: IDeferredTaskQueue,
        directory: IMembershipDirectory,
        clock: Callable[[], datetime] = utcnow,
        outbox: Optional[NotificationOutbox] = None
    ):
        self._task_queue = task_queue
        self._directory = directory
        self._clock = clock
        self._outbox = outbox

    def scope(self) -> ContextManager[None]:
        """Drop what the block held if it raises; a no-op without an outbox."""
        if self._outbox is None:
            return nullcontext()
        return self._outbox.scope()

    async def _deliver(self, delivery: HeldDelivery) -> bool:
        if self._outbox is not None:
            return self._outbox.hold(delivery)
        return await schedule_delivery(self._task_queue, delivery)

    async def fan_out(
        self,
        event: NotificationEvent,
        event_key: str,
        recipients: Iterable[Optional[UUID]],
        title: str,
        message: str,
        context: dict,
        exclude: Optional[UUID] = None
    ) -> List[UUID]:
        """Enqueue one delivery per unique recipient; returns who was queued."""
        now = self._clock()
        queued = []
        for recipient in unique_recipients(recipients, exclude=exclude):
            notification = Notification(
                recipient_user_id=recipient,
                title=title,
                message=message,
                context={"event": event.value, **context},
            )
            delivery = HeldDelivery(
                dedupe_key=f"notify:{event.value}:{event_key}:{recipient}",
                payload=notification.to_payload(),
                fire_at=now,
            )
            if await self._deliver(delivery):
                queued.append(recipient)

        logger.info(
            "Notification fan-out",
            extra={"event": event.value, "event_key": event_key, "recipients": len(queued)}
        )
        return queued

    async def notify_sla_breach(self, ticket: Any) -> List[UUID]:
        admins = await self._directory.list_admin_ids(ticket.organization_id)
        deadline = ticket.sla_deadline.isoformat() if ticket.sla_deadline else None
        return await self.fan_out(
            NotificationEvent.SLA_BREACHED,
            event_key=f"{ticket.id}:{deadline}",
            recipients=[ticket.assignee_id, *admins],
            title="SLA Breach",
            message=f"Ticket #{ticket.number} has breached its SLA deadline",
            context={
                "ticket_id": str(ticket.id),
                "ticket_number": ticket.number,
                "organization_id": str(ticket.organization_id),
                "deadline": deadline,
            },
        )

    async def notify_assignment(self, ticket: Any, actor_id: Optional[UUID]) -> List[UUID]:
        if ticket.assignee_id is None:
            return []
        return await self.fan_out(
            NotificationEvent.TICKET_ASSIGNED,
            event_key=f"{ticket.id}:{ticket.assignee_id}:{self._clock().isoformat()}",
            recipients=[ticket.assignee_id],
            title="Ticket assigned",
            message=f"You have been assigned ticket #{ticket.number}: {ticket.title}",
            context={
                "ticket_id": str(ticket.id),
                "ticket_number": ticket.number,
                "organization_id": str(ticket.organization_id),
            },
            exclude=actor_id,
        )

    async def notify_status_change(
        self,
        ticket: Any,
        actor_id: Optional[UUID],
        from_status: str,
        to_status: str
    ) -> List[UUID]:
        return await self.fan_out(
            NotificationEvent.STATUS_CHANGED,
            event_key=f"{ticket.id}:{from_status}:{to_status}:{self._clock().isoformat()}",
            recipients=[ticket.customer_id, ticket.assignee_id],
            title="Ticket status changed",
            message=f"Ticket #{ticket.number} moved from {from_status} to {to_status}",
            context={
                "ticket_id": str(ticket.id),
                "ticket_number": ticket.number,
                "organization_id": str(ticket.organization_id),
                "from_status": from_status,
                "to_status": to_status,
            },
            exclude=actor_id,
        )

    async def notify_usage_alert(
        self,
        organization_id: UUID,
        dimension: str,
        current: int,
        limit: int,
        percent_used: int,
        period_key: str
    ) -> List[UUID]:
        admins = await self._directory.list_admin_ids(organization_id)
        return await self.fan_out(
            NotificationEvent.USAGE_ALERT,
            event_key=f"{organization_id}:{dimension}:{period_key}",
            recipients=admins,
            title="Usage alert",
            message=f"Your organization has used {percent_used}% of its {dimension} quota ({current}/{limit})",
            context={
                "organization_id": str(organization_id),
                "dimension": dimension,
                "current": current,
                "limit": limit,
                "percent_used": percent_used,
            },
        )


class NotificationDeliveryHandler:
    """Deferred task handler handing a queued notification to the sink."""

    def __init__(self, sink: INotificationSink):
        self._sink = sink

    async def __call__(self, payload: dict) -> None:
        await self._sink.send(Notification.from_payload(payload))
