"""
Tests for ticket lifecycle operations.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from helpdesk.config import UsageDimension
from helpdesk.core.exceptions import (
    BadRequestException,
    ForbiddenException,
    LimitExceededException,
    ResourceNotFoundException,
)
from helpdesk.notifications.application import DELIVER_TASK
from helpdesk.sla.application import SLA_CHECK_TASK, SLAPolicyCreateDTO
from helpdesk.tickets.application import (
    MessageCreateDTO,
    TicketCreateDTO,
    TicketListQuery,
    TicketUpdateDTO,
)

from conftest import T0


async def open_ticket(services, actor, title="Cannot export invoices", **fields):
    return await services.tickets.create(actor, TicketCreateDTO(title=title, **fields))


async def actions(services, actor, ticket):
    return [a.action for a in await services.tickets.list_activities(actor, ticket.id)]


async def deliveries(services, event):
    await services.outbox.flush()
    return [
        task for task in services.task_queue.named(DELIVER_TASK)
        if task.payload["context"]["event"] == event
    ]


class TestCreateTicket:
    async def test_create(self, services, org):
        ticket = await open_ticket(services, org.customer, tags=["billing", " billing ", ""])

        assert ticket.number == 1
        assert ticket.status == "open"
        assert ticket.priority == "medium"
        assert ticket.customer_id == org.customer.actor_id
        assert ticket.tags == ["billing"]

        activities = await services.tickets.list_activities(org.customer, ticket.id)
        assert len(activities) == 1
        assert activities[0].action == "created"
        assert activities[0].actor_id == org.customer.actor_id
        assert activities[0].details == {"number": 1, "priority": "medium", "channel": "web"}

    async def test_numbers_are_per_organization(self, services, org, other_org):
        first = await open_ticket(services, org.customer)
        second = await open_ticket(services, org.customer)
        elsewhere = await open_ticket(services, other_org.customer)

        assert (first.number, second.number, elsewhere.number) == (1, 2, 1)

    async def test_arms_sla_check(self, services, org, task_queue):
        ticket = await open_ticket(services, org.customer)

        assert ticket.sla_deadline == T0 + timedelta(hours=8)
        [task] = task_queue.named(SLA_CHECK_TASK)
        assert task.fire_at == ticket.sla_deadline
        assert task.payload["ticket_id"] == str(ticket.id)

    async def test_organization_policy_sets_deadline(self, services, org):
        await services.sla_policies.upsert(org.id, SLAPolicyCreateDTO(
            name="High", priority="high", first_response_time=30, resolution_time=120
        ))
        ticket = await open_ticket(services, org.customer, priority="high")

        assert ticket.sla_deadline == T0 + timedelta(minutes=30)

    async def test_charges_tickets_quota(self, services, org):
        await open_ticket(services, org.customer)
        record = await services.ledger.get_current(org.id)

        assert record.tickets_created == 1
        assert record.tickets_remaining == 49

    async def test_quota_exhausted(self, services, org):
        await services.ledger.increment_usage(org.id, UsageDimension.TICKETS, 50)

        with pytest.raises(LimitExceededException):
            await open_ticket(services, org.customer)

        _, total = await services.tickets.list(org.agent, TicketListQuery())
        assert total == 0

    async def test_strict_quota_reserves(self, make_services, org):
        services = make_services(strict_quota=True)
        await services.ledger.increment_usage(org.id, UsageDimension.TICKETS, 49)

        await open_ticket(services, org.customer)
        with pytest.raises(LimitExceededException):
            await open_ticket(services, org.customer)

        record = await services.ledger.get_current(org.id)
        assert record.tickets_created == 50

    async def test_staff_opens_on_behalf_of_customer(self, services, org):
        ticket = await open_ticket(services, org.agent, customer_id=org.customer.actor_id, channel="email")
        assert ticket.customer_id == org.customer.actor_id
        assert ticket.channel == "email"

    async def test_customer_cannot_open_for_someone_else(self, services, org):
        ticket = await open_ticket(services, org.customer, customer_id=org.other_customer.actor_id)
        assert ticket.customer_id == org.customer.actor_id


class TestUpdateTicket:
    async def test_each_change_is_recorded(self, services, org):
        ticket = await open_ticket(services, org.customer)

        await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(
            title="CSV export hangs", priority="high", status="resolved", add_tags=["export"]
        ))

        assert ticket.title == "CSV export hangs"
        assert ticket.status == "resolved"
        assert ticket.resolved_at == T0
        assert await actions(services, org.agent, ticket) == [
            "created", "priority_changed", "status_changed", "tagged",
        ]

    async def test_title_only_adds_no_activity(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(title="Renamed"))

        assert await actions(services, org.agent, ticket) == ["created"]

    async def test_illegal_transition(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.close(org.agent, ticket.id)

        with pytest.raises(BadRequestException):
            await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(status="resolved"))

    async def test_status_change_notifies_customer(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(status="resolved"))

        [task] = await deliveries(services, "status_changed")
        assert task.payload["recipient_user_id"] == str(org.customer.actor_id)
        assert task.payload["context"]["to_status"] == "resolved"

    async def test_customer_cannot_update(self, services, org):
        ticket = await open_ticket(services, org.customer)
        with pytest.raises(ForbiddenException):
            await services.tickets.update(org.customer, ticket.id, TicketUpdateDTO(priority="urgent"))


class TestAssignTicket:
    async def test_assign_moves_to_pending(self, services, org):
        ticket = await open_ticket(services, org.customer)

        await services.tickets.assign(org.admin, ticket.id, org.agent.actor_id)

        assert ticket.assignee_id == org.agent.actor_id
        assert ticket.status == "pending"
        assert await actions(services, org.admin, ticket) == ["created", "assigned", "status_changed"]

        activities = await services.tickets.list_activities(org.admin, ticket.id)
        assert activities[1].details["assignee_name"] == "Agent"

        [task] = await deliveries(services, "ticket_assigned")
        assert task.payload["recipient_user_id"] == str(org.agent.actor_id)

    async def test_self_assignment_is_not_notified(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.assign(org.agent, ticket.id, org.agent.actor_id)

        assert await deliveries(services, "ticket_assigned") == []

    async def test_unassign_moves_back_to_open(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.assign(org.agent, ticket.id, org.agent.actor_id)
        await services.tickets.assign(org.agent, ticket.id, None)

        assert ticket.assignee_id is None
        assert ticket.status == "open"

    async def test_assignee_must_be_staff(self, services, org):
        ticket = await open_ticket(services, org.customer)

        with pytest.raises(ResourceNotFoundException):
            await services.tickets.assign(org.agent, ticket.id, org.other_customer.actor_id)
        with pytest.raises(ResourceNotFoundException):
            await services.tickets.assign(org.agent, ticket.id, uuid4())

    async def test_assignee_from_other_organization(self, services, org, other_org):
        ticket = await open_ticket(services, org.customer)
        with pytest.raises(ResourceNotFoundException):
            await services.tickets.assign(org.agent, ticket.id, other_org.agent.actor_id)

    async def test_customer_cannot_assign(self, services, org):
        ticket = await open_ticket(services, org.customer)
        with pytest.raises(ForbiddenException):
            await services.tickets.assign(org.customer, ticket.id, org.agent.actor_id)


class TestCloseAndReopen:
    async def test_customer_closes_own_ticket(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.close(org.customer, ticket.id, reason="Fixed itself")

        activities = await services.tickets.list_activities(org.customer, ticket.id)
        assert ticket.status == "closed"
        assert ticket.closed_at == T0
        assert activities[-1].action == "closed"
        assert activities[-1].details == {"from_status": "open", "reason": "Fixed itself"}

    async def test_close_twice(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.close(org.agent, ticket.id)

        with pytest.raises(ForbiddenException):
            await services.tickets.close(org.agent, ticket.id)

    async def test_reopen_rearms_sla(self, services, org, task_queue, clock):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.close(org.agent, ticket.id)
        ticket.sla_breached = True

        clock.advance(hours=3)
        await services.tickets.reopen(org.customer, ticket.id)

        assert ticket.status == "open"
        assert ticket.sla_breached is False
        assert ticket.sla_deadline == clock.now + timedelta(hours=8)
        assert [t.fire_at for t in task_queue.named(SLA_CHECK_TASK)] == [
            T0 + timedelta(hours=8),
            clock.now + timedelta(hours=8),
        ]

    async def test_status_open_on_closed_ticket_is_a_reopen(self, services, org, task_queue, clock):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.close(org.customer, ticket.id)
        ticket.sla_breached = True

        clock.advance(hours=3)
        await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(status="open"))

        assert ticket.status == "open"
        assert ticket.sla_breached is False
        assert ticket.sla_deadline == clock.now + timedelta(hours=8)
        assert task_queue.named(SLA_CHECK_TASK)[-1].fire_at == clock.now + timedelta(hours=8)
        assert (await actions(services, org.agent, ticket))[-1] == "reopened"

        [task] = [t for t in await deliveries(services, "status_changed") if t.payload["context"]["to_status"] == "open"]
        assert task.payload["recipient_user_id"] == str(org.customer.actor_id)
        assert task.payload["context"]["from_status"] == "closed"

    async def test_reopen_requires_closed(self, services, org):
        ticket = await open_ticket(services, org.customer)
        with pytest.raises(ForbiddenException):
            await services.tickets.reopen(org.agent, ticket.id)


class TestMessages:
    async def test_staff_reply_is_first_response(self, services, org, clock):
        ticket = await open_ticket(services, org.customer)

        await services.tickets.add_message(org.customer, ticket.id, MessageCreateDTO(content="Any news?"))
        assert ticket.first_response_at is None

        clock.advance(minutes=20)
        await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="Looking into it"))
        assert ticket.first_response_at == clock.now

        clock.advance(minutes=20)
        await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="Fixed"))
        assert ticket.first_response_at == T0 + timedelta(minutes=20)

    async def test_internal_note_is_not_first_response(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.add_message(
            org.agent, ticket.id, MessageCreateDTO(content="Escalate?", message_type="internal_note")
        )
        assert ticket.first_response_at is None

    async def test_customer_cannot_post_internal_note(self, services, org):
        ticket = await open_ticket(services, org.customer)

        with pytest.raises(ForbiddenException) as exc_info:
            await services.tickets.add_message(
                org.customer, ticket.id, MessageCreateDTO(content="psst", message_type="internal_note")
            )
        assert exc_info.value.message == "Customers cannot create internal notes"

    async def test_system_messages_are_rejected(self, services, org):
        ticket = await open_ticket(services, org.customer)
        with pytest.raises(ForbiddenException):
            await services.tickets.add_message(
                org.agent, ticket.id, MessageCreateDTO(content="x", message_type="system")
            )

    async def test_internal_notes_hidden_from_customer(self, services, org, clock):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="Hello"))
        clock.advance(minutes=1)
        await services.tickets.add_message(
            org.agent, ticket.id, MessageCreateDTO(content="VIP", message_type="internal_note")
        )

        customer_view = await services.tickets.list_messages(org.customer, ticket.id)
        agent_view = await services.tickets.list_messages(org.agent, ticket.id)

        assert [m.content for m in customer_view] == ["Hello"]
        assert [m.content for m in agent_view] == ["Hello", "VIP"]

    async def test_messages_quota(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="Hi"))
        record = await services.ledger.get_current(org.id)
        assert record.messages_created == 1

        await services.ledger.increment_usage(org.id, UsageDimension.MESSAGES, 199)
        with pytest.raises(LimitExceededException):
            await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="One more"))

    async def test_message_activity(self, services, org):
        ticket = await open_ticket(services, org.customer)
        message = await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="Hi"))

        activities = await services.tickets.list_activities(org.agent, ticket.id)
        assert activities[-1].action == "message_added"
        assert activities[-1].details == {"message_id": str(message.id), "message_type": "reply"}


class TestAccess:
    """Organization and ownership scoping."""

    async def test_other_organization(self, services, org, other_org):
        ticket = await open_ticket(services, org.customer)

        with pytest.raises(ForbiddenException) as exc_info:
            await services.tickets.get(other_org.admin, ticket.id)
        assert exc_info.value.message == "Ticket belongs to another organization"

    async def test_customer_sees_only_own_tickets(self, services, org):
        ticket = await open_ticket(services, org.customer)
        await open_ticket(services, org.other_customer)

        with pytest.raises(ForbiddenException):
            await services.tickets.get(org.other_customer, ticket.id)

        items, total = await services.tickets.list(org.customer, TicketListQuery())
        assert total == 1
        assert items[0].id == ticket.id

    async def test_missing_ticket(self, services, org):
        with pytest.raises(ResourceNotFoundException):
            await services.tickets.get(org.agent, uuid4())

    async def test_stats_need_staff(self, services, org):
        with pytest.raises(ForbiddenException):
            await services.tickets.stats(org.customer)


class TestListing:
    async def test_filters(self, services, org):
        first = await open_ticket(services, org.customer, title="Invoice totals wrong")
        second = await open_ticket(services, org.customer, title="Login loop", priority="urgent")
        third = await open_ticket(services, org.other_customer, title="Dark mode")
        await services.tickets.assign(org.agent, second.id, org.agent.actor_id)
        await services.tickets.update(org.agent, third.id, TicketUpdateDTO(status="resolved"))

        async def numbers(**filters):
            items, _ = await services.tickets.list(org.agent, TicketListQuery(**filters))
            return [t.number for t in items]

        assert await numbers() == [3, 2, 1]
        assert await numbers(status=["open", "pending"]) == [2, 1]
        assert await numbers(assignee_id="unassigned") == [3, 1]
        assert await numbers(assignee_id=str(org.agent.actor_id)) == [2]
        assert await numbers(priority="urgent") == [2]
        assert await numbers(search="invoice") == [1]
        assert await numbers(search="#3") == [3]
        assert await numbers(customer_id=org.other_customer.actor_id) == [3]
        assert await numbers(sort_by="priority") == [2, 3, 1]
        assert await numbers(sort_by="number", sort_order="asc") == [1, 2, 3]
        assert first.number == 1

    async def test_pagination(self, services, org):
        for i in range(5):
            await open_ticket(services, org.customer, title=f"Ticket {i}")

        items, total = await services.tickets.list(org.agent, TicketListQuery(page=2, limit=2))

        assert total == 5
        assert [t.number for t in items] == [3, 2]

    async def test_stats(self, services, org):
        first = await open_ticket(services, org.customer, priority="high")
        await open_ticket(services, org.customer, priority="high")
        await open_ticket(services, org.customer, priority="low")
        await services.tickets.update(org.agent, first.id, TicketUpdateDTO(status="resolved"))

        stats = await services.tickets.stats(org.agent)

        assert stats["total"] == 3
        assert stats["by_status"] == {"open": 2, "pending": 0, "resolved": 1, "closed": 0}
        assert stats["by_priority"] == {"low": 1, "medium": 0, "high": 1, "urgent": 0}
