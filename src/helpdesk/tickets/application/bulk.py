"""
Bulk Ticket Operations
======================

Bulk update, assign, delete and merge.

Each ticket runs in its own savepoint: one ticket failing (not found,
another organization, illegal transition) rolls back only that ticket and
is reported in the result, the rest still apply. Notifications raised by a
failed ticket are dropped with its savepoint.
"""

from typing import Awaitable, Callable, Iterable, List, Optional
from uuid import UUID

from helpdesk.config import settings
from helpdesk.core.context import ActorContext
from helpdesk.core.exceptions import ApplicationException, BadRequestException
from helpdesk.core.permissions import Capability, require_capability
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application.dto import (
    BulkAssignDTO,
    BulkDeleteDTO,
    BulkItemError,
    BulkOperationResult,
    BulkUpdateDTO,
    MergeResult,
    MergeTicketsDTO,
    TicketUpdateDTO,
)
from helpdesk.tickets.application.services import TicketService

logger = get_logger(__name__)

UPDATE_FIELDS = ("status", "priority", "category_id", "add_tags", "remove_tags")


def unique_ids(ticket_ids: Iterable[UUID], max_items: int) -> List[UUID]:
    """
    De-duplicate preserving order.

    Raises:
        BadRequestException: Empty, or more than ``max_items`` distinct ids
    """
    ids = list(dict.fromkeys(ticket_ids))
    if not ids:
        raise BadRequestException("At least one ticket id is required")
    if len(ids) > max_items:
        raise BadRequestException(
            f"At most {max_items} tickets can be processed at once",
            {"count": len(ids), "max_items": max_items}
        )
    return ids


class BulkTicketService:
    """
    Runs single-ticket operations over a list of ids.

    Single-ticket rules (access, transitions, activities, notifications)
    come from ``TicketService`` unchanged.
    """

    def __init__(
        self,
        ticket_service: TicketService,
        max_items: Optional[int] = None,
        merge_max_items: Optional[int] = None
    ):
        self._tickets = ticket_service
        self._max_items = max_items or settings.bulk_max_items
        self._merge_max_items = merge_max_items or settings.merge_max_items

    async def _run_each(
        self,
        ticket_ids: List[UUID],
        operation: Callable[[UUID], Awaitable[object]],
        result: BulkOperationResult
    ) -> BulkOperationResult:
        for ticket_id in ticket_ids:
            try:
                with self._tickets.notifier.scope():
                    async with self._tickets.repository.savepoint():
                        await operation(ticket_id)
            except ApplicationException as e:
                result.errors.append(BulkItemError(ticket_id=ticket_id, error=e.message))
            except Exception as e:
                logger.error(
                    "Bulk item failed",
                    extra={"ticket_id": str(ticket_id), "error": str(e)},
                    exc_info=True
                )
                result.errors.append(BulkItemError(ticket_id=ticket_id, error="Internal error"))
            else:
                result.success_count += 1

        result.failure_count = len(result.errors)
        return result

    async def bulk_update(self, actor: ActorContext, data: BulkUpdateDTO) -> BulkOperationResult:
        """
        Apply the same change set to every ticket.

        Assignment runs before the status change, so "assign and resolve"
        ends resolved rather than pending.
        """
        require_capability(actor, Capability.BULK_UPDATE)
        ticket_ids = unique_ids(data.ticket_ids, self._max_items)
        sent = data.model_dump(exclude_unset=True)
        update = TicketUpdateDTO(**{k: v for k, v in sent.items() if k in UPDATE_FIELDS})
        has_update = bool(update.model_dump(exclude_unset=True))
        assign = "assignee_id" in sent

        async def apply(ticket_id: UUID) -> None:
            if assign:
                await self._tickets.assign(actor, ticket_id, data.assignee_id)
            if has_update or not assign:
                await self._tickets.update(actor, ticket_id, update)

        result = await self._run_each(ticket_ids, apply, BulkOperationResult())
        self._log("Bulk update", actor, result)
        return result

    async def bulk_assign(self, actor: ActorContext, data: BulkAssignDTO) -> BulkOperationResult:
        require_capability(actor, Capability.ASSIGN_TICKET)
        ticket_ids = unique_ids(data.ticket_ids, self._max_items)

        async def apply(ticket_id: UUID) -> None:
            await self._tickets.assign(actor, ticket_id, data.assignee_id)

        result = await self._run_each(ticket_ids, apply, BulkOperationResult())
        self._log("Bulk assign", actor, result)
        return result

    async def bulk_delete(self, actor: ActorContext, data: BulkDeleteDTO) -> BulkOperationResult:
        """
        Close every ticket, or erase them when ``permanent``.

        Admin and owner only.
        """
        require_capability(actor, Capability.BULK_DELETE)
        ticket_ids = unique_ids(data.ticket_ids, self._max_items)

        async def apply(ticket_id: UUID) -> None:
            if data.permanent:
                await self._tickets.delete_permanently(actor, ticket_id)
            else:
                await self._tickets.close(actor, ticket_id, reason="bulk_delete")

        result = await self._run_each(ticket_ids, apply, BulkOperationResult())
        self._log("Bulk delete", actor, result, permanent=data.permanent)
        return result

    async def merge(self, actor: ActorContext, data: MergeTicketsDTO) -> MergeResult:
        """
        Merge secondaries into the primary.

        Every secondary ends closed with ``merged_into_id`` set; with
        ``merge_comments`` its messages are copied to the primary first.

        Raises:
            ResourceNotFoundException: Primary does not exist
            ForbiddenException: Primary belongs to another organization
        """
        require_capability(actor, Capability.MERGE_TICKETS)
        secondary_ids = unique_ids(data.secondary_ticket_ids, self._merge_max_items)
        primary = await self._tickets.get(actor, data.primary_ticket_id)

        result = MergeResult(primary_ticket_id=primary.id)

        async def apply(ticket_id: UUID) -> None:
            copied = await self._tickets.merge_into(actor, primary, ticket_id, data.merge_comments)
            result.merged_ticket_ids.append(ticket_id)
            result.messages_copied += copied

        await self._run_each(secondary_ids, apply, result)
        self._log("Tickets merged", actor, result, primary_ticket_id=str(primary.id))
        return result

    @staticmethod
    def _log(message: str, actor: ActorContext, result: BulkOperationResult, **extra) -> None:
        logger.info(
            message,
            extra={
                "actor_id": str(actor.actor_id),
                "organization_id": str(actor.organization_id),
                "success_count": result.success_count,
                "failure_count": result.failure_count,
                **extra,
            }
        )
