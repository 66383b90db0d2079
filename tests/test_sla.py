"""
Tests for SLA deadlines, breach checks and organization policies.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from helpdesk.config import TicketPriority
from helpdesk.core.exceptions import ResourceNotFoundException
from helpdesk.notifications.application import DELIVER_TASK
from helpdesk.sla.application import SLA_CHECK_TASK, SLAPolicyCreateDTO, SLAPolicyUpdateDTO
from helpdesk.sla.domain import SLACalculator, SLADefaults
from helpdesk.tickets.application import MessageCreateDTO, TicketCreateDTO

from conftest import T0


async def open_ticket(services, actor, priority="medium"):
    return await services.tickets.create(actor, TicketCreateDTO(title="Site down", priority=priority))


async def breach_deliveries(services):
    await services.outbox.flush()
    return [
        task for task in services.task_queue.named(DELIVER_TASK)
        if task.payload["context"]["event"] == "sla_breached"
    ]


class TestDeadlines:
    @pytest.mark.parametrize("priority,minutes", [
        ("low", 1440), ("medium", 480), ("high", 240), ("urgent", 60),
    ])
    def test_system_defaults(self, priority, minutes):
        assert SLACalculator.first_response_minutes(priority, SLADefaults()) == minutes

    def test_policy_overrides_default(self):
        assert SLACalculator.first_response_minutes("high", SLADefaults(), policy_minutes=15) == 15

    def test_partial_defaults_are_filled_in(self):
        defaults = SLADefaults(targets={"high": {"first_response_minutes": 90, "resolution_minutes": 300}})

        assert defaults.target_for(TicketPriority.HIGH).first_response_minutes == 90
        assert defaults.target_for(TicketPriority.URGENT).first_response_minutes == 60


class TestBreachChecker:
    async def test_breach_notifies_assignee_and_admins(self, services, org, task_queue, clock):
        ticket = await open_ticket(services, org.customer, priority="high")
        await services.tickets.assign(org.admin, ticket.id, org.agent.actor_id)
        [check] = task_queue.named(SLA_CHECK_TASK)

        clock.now = check.fire_at + timedelta(seconds=1)
        await services.breach_checker.handle_task(check.payload)

        assert ticket.sla_breached is True
        activities = await services.tickets.list_activities(org.admin, ticket.id)
        assert activities[-1].action == "sla_breached"
        assert activities[-1].actor_id is None
        assert activities[-1].details["deadline"] == (T0 + timedelta(hours=4)).isoformat()

        recipients = {task.payload["recipient_user_id"] for task in await breach_deliveries(services)}
        assert recipients == {
            str(org.agent.actor_id), str(org.admin.actor_id), str(org.owner.actor_id),
        }

    async def test_double_fire_is_harmless(self, services, org, clock):
        ticket = await open_ticket(services, org.customer, priority="high")
        clock.advance(hours=5)

        assert await services.breach_checker.check(ticket.id) is True
        assert await services.breach_checker.check(ticket.id) is False

        actions = [a.action for a in await services.tickets.list_activities(org.agent, ticket.id)]
        assert actions.count("sla_breached") == 1
        # Unassigned: admins only, one delivery each
        assert len(await breach_deliveries(services)) == 2

    async def test_closed_before_deadline(self, services, org, clock):
        ticket = await open_ticket(services, org.customer, priority="high")

        clock.advance(hours=2)
        await services.tickets.close(org.customer, ticket.id)
        clock.advance(hours=2, seconds=1)

        assert await services.breach_checker.check(ticket.id) is False
        assert ticket.sla_breached is False
        actions = [a.action for a in await services.tickets.list_activities(org.agent, ticket.id)]
        assert "sla_breached" not in actions

    async def test_answered_before_deadline(self, services, org, clock):
        ticket = await open_ticket(services, org.customer)
        clock.advance(hours=1)
        await services.tickets.add_message(org.agent, ticket.id, MessageCreateDTO(content="On it"))

        clock.advance(hours=10)
        assert await services.breach_checker.check(ticket.id) is False

    async def test_early_fire(self, services, org, clock):
        ticket = await open_ticket(services, org.customer)
        clock.advance(hours=7)
        assert await services.breach_checker.check(ticket.id) is False

    async def test_missing_ticket(self, services):
        assert await services.breach_checker.check(uuid4()) is False

    async def test_reopen_rearms(self, services, org, task_queue, clock):
        ticket = await open_ticket(services, org.customer, priority="urgent")
        clock.advance(hours=2)
        assert await services.breach_checker.check(ticket.id) is True

        await services.tickets.close(org.agent, ticket.id)
        clock.advance(hours=1)
        await services.tickets.reopen(org.customer, ticket.id)

        assert ticket.sla_breached is False
        assert ticket.sla_deadline == clock.now + timedelta(hours=1)

        # The stale check from the first arming finds the new deadline ahead
        first_check = task_queue.named(SLA_CHECK_TASK)[0]
        await services.breach_checker.handle_task(first_check.payload)
        assert ticket.sla_breached is False

        clock.advance(hours=1, seconds=1)
        assert await services.breach_checker.check(ticket.id) is True

        actions = [a.action for a in await services.tickets.list_activities(org.agent, ticket.id)]
        assert actions.count("sla_breached") == 2

    async def test_sweep_overdue(self, services, org, clock):
        late = await open_ticket(services, org.customer, priority="urgent")
        await open_ticket(services, org.customer, priority="low")

        clock.advance(hours=2)
        assert await services.breach_checker.sweep_overdue() == 1
        assert await services.breach_checker.sweep_overdue() == 0
        assert late.sla_breached is True


class TestPolicies:
    async def test_upsert_keeps_one_default_per_priority(self, services, org):
        first = await services.sla_policies.upsert(org.id, SLAPolicyCreateDTO(
            name="High", priority="high", first_response_time=60, resolution_time=240
        ))
        second = await services.sla_policies.upsert(org.id, SLAPolicyCreateDTO(
            name="High v2", priority="high", first_response_time=45, resolution_time=240
        ))

        policies = await services.sla_policies.list(org.id)
        assert first.id == second.id
        assert len(policies) == 1
        assert policies[0].name == "High v2"
        assert await services.sla_policies.first_response_minutes(org.id, TicketPriority.HIGH) == 45

    async def test_initialize_defaults(self, services, org):
        await services.sla_policies.upsert(org.id, SLAPolicyCreateDTO(
            name="Urgent", priority="urgent", first_response_time=15, resolution_time=60
        ))

        created = await services.sla_policies.initialize_defaults(org.id)

        assert sorted(p.priority for p in created) == ["high", "low", "medium"]
        assert await services.sla_policies.initialize_defaults(org.id) == []
        assert await services.sla_policies.first_response_minutes(org.id, TicketPriority.URGENT) == 15

    async def test_update_and_remove(self, services, org):
        policy = await services.sla_policies.upsert(org.id, SLAPolicyCreateDTO(
            name="Low", priority="low", first_response_time=600, resolution_time=2000
        ))

        await services.sla_policies.update(org.id, policy.id, SLAPolicyUpdateDTO(first_response_time=300))
        assert await services.sla_policies.first_response_minutes(org.id, TicketPriority.LOW) == 300

        await services.sla_policies.remove(org.id, policy.id)
        assert await services.sla_policies.first_response_minutes(org.id, TicketPriority.LOW) == 1440

    async def test_policies_are_per_organization(self, services, org, other_org):
        policy = await services.sla_policies.upsert(org.id, SLAPolicyCreateDTO(
            name="Low", priority="low", first_response_time=600, resolution_time=2000
        ))

        with pytest.raises(ResourceNotFoundException):
            await services.sla_policies.get(other_org.id, policy.id)
        assert await services.sla_policies.list(other_org.id) == []
