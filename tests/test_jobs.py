"""
Tests for deferred task dispatch and the background jobs that run them.

Jobs open their own sessions, so these tests use a session factory over the
shared in-memory engine instead of the per-test session fixture.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from helpdesk.billing.application import ROLLOVER_TASK
from helpdesk.container import ServiceContainer
from helpdesk.infrastructure.database import build_session_maker
from helpdesk.infrastructure.tasks import TaskOutcome, TaskRegistry
from helpdesk.jobs import BackgroundJobs
from helpdesk.notifications.application import DELIVER_TASK
from helpdesk.sla.application import SLA_CHECK_TASK
from helpdesk.tickets.application import TicketCreateDTO, TicketUpdateDTO
from helpdesk.tickets.services import AUTO_CLOSE_REASON

from conftest import ORG_ROLES, Clock, FakeSink, add_members

# Far enough back that the real clock used by the jobs is past every deadline
PAST = datetime(2020, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(engine):
    maker = build_session_maker(engine)

    @asynccontextmanager
    async def factory():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory


@pytest.fixture
def container(task_queue, catalog_provider, sla_defaults_provider):
    def build(session, clock=None):
        return ServiceContainer(
            session,
            task_queue,
            catalog_provider,
            sla_defaults_provider,
            clock=clock or Clock(PAST),
        )
    return build


@pytest.fixture
def jobs(task_queue, catalog_provider, sla_defaults_provider, sink, session_factory):
    return BackgroundJobs(task_queue, catalog_provider, sla_defaults_provider, sink, session_factory)


@pytest.fixture
async def seeded(session_factory, container):
    """Organization on the Free plan with one open high-priority ticket, committed."""
    async with session_factory() as session:
        organization_id = uuid4()
        actors = await add_members(session, organization_id, ORG_ROLES)
        services = container(session)
        await services.subscriptions.create_for_organization(organization_id)
        ticket = await services.tickets.create(
            actors["customer"], TicketCreateDTO(title="Printer on fire", priority="high")
        )
        return organization_id, actors, ticket.id


class TestTaskRegistry:
    async def test_completed(self):
        calls = []

        async def handler(payload):
            calls.append(payload)

        registry = TaskRegistry()
        registry.register("demo", handler)

        assert await registry.dispatch("demo", {"n": 1}) == TaskOutcome.COMPLETED
        assert calls == [{"n": 1}]

    async def test_retry_until_attempts_spent(self):
        async def handler(payload):
            raise RuntimeError("boom")

        registry = TaskRegistry()
        registry.register("demo", handler)

        assert await registry.dispatch("demo", {}, attempt=1, max_attempts=3) == TaskOutcome.RETRY
        assert await registry.dispatch("demo", {}, attempt=2, max_attempts=3) == TaskOutcome.RETRY
        assert await registry.dispatch("demo", {}, attempt=3, max_attempts=3) == TaskOutcome.FAILED

    async def test_unknown_task(self):
        assert await TaskRegistry().dispatch("missing", {}) == TaskOutcome.FAILED

    def test_jobs_register_every_task(self, jobs):
        registry = TaskRegistry()
        jobs.register(registry)
        assert registry.names() == sorted([SLA_CHECK_TASK, ROLLOVER_TASK, DELIVER_TASK])


class TestBackgroundJobs:
    async def test_sla_check_records_breach_once(self, jobs, seeded, session_factory, container, task_queue):
        organization_id, actors, ticket_id = seeded
        [check] = task_queue.named(SLA_CHECK_TASK)
        assert check.fire_at == PAST + timedelta(hours=4)

        await jobs.handle_sla_check(check.payload)
        await jobs.handle_sla_check(check.payload)

        async with session_factory() as session:
            services = container(session)
            ticket = await services.ticket_repository.get_by_id(ticket_id)
            activities = await services.activity_repository.list_for_ticket(ticket_id)

        assert ticket.sla_breached is True
        assert [a.action for a in activities].count("sla_breached") == 1

        breaches = [t for t in task_queue.named(DELIVER_TASK) if t.payload["context"]["event"] == "sla_breached"]
        assert {t.payload["recipient_user_id"] for t in breaches} == {
            str(actors["owner"].actor_id), str(actors["admin"].actor_id),
        }

    async def test_overdue_sweep(self, jobs, seeded, session_factory, container):
        _, _, ticket_id = seeded

        await jobs.sweep_sla()

        async with session_factory() as session:
            ticket = await container(session).ticket_repository.get_by_id(ticket_id)
        assert ticket.sla_breached is True

    async def test_rollover_sweep_then_task(self, jobs, seeded, session_factory, container, task_queue):
        organization_id, _, _ = seeded

        await jobs.sweep_rollovers()
        [rollover] = task_queue.named(ROLLOVER_TASK)
        assert rollover.payload["organization_id"] == str(organization_id)

        await jobs.handle_rollover(rollover.payload)

        async with session_factory() as session:
            services = container(session)
            subscription = await services.subscriptions.get(organization_id)
            history = await services.ledger.history(organization_id)

        assert subscription.current_period_start > PAST + timedelta(days=31)
        assert [r.is_current for r in history] == [True, False]
        assert history[0].tickets_created == 0
        assert history[1].tickets_created == 1

    async def test_auto_close_sweep(self, jobs, seeded, session_factory, container):
        _, actors, ticket_id = seeded
        async with session_factory() as session:
            await container(session).tickets.update(
                actors["agent"], ticket_id, TicketUpdateDTO(status="resolved")
            )

        await jobs.sweep_auto_close()

        async with session_factory() as session:
            ticket = await container(session).ticket_repository.get_by_id(ticket_id)
        assert ticket.status == "closed"

    async def test_delivery(self, jobs, seeded, sink, task_queue):
        await jobs.handle_sla_check(task_queue.named(SLA_CHECK_TASK)[0].payload)
        delivery = task_queue.named(DELIVER_TASK)[-1]

        await jobs.handle_delivery(delivery.payload)

        assert len(sink.sent) == 1
        assert sink.sent[0].title == "SLA Breach"
        assert str(sink.sent[0].recipient_user_id) == delivery.payload["recipient_user_id"]

    async def test_failed_commit_releases_no_notifications(
        self, seeded, engine, task_queue, catalog_provider, sla_defaults_provider, sink
    ):
        maker = build_session_maker(engine)

        @asynccontextmanager
        async def commit_fails():
            async with maker() as session:
                yield session
                await session.rollback()
                raise RuntimeError("commit failed")

        jobs = BackgroundJobs(task_queue, catalog_provider, sla_defaults_provider, sink, commit_fails)
        [check] = task_queue.named(SLA_CHECK_TASK)

        with pytest.raises(RuntimeError):
            await jobs.handle_sla_check(check.payload)

        assert task_queue.named(DELIVER_TASK) == []

    async def test_failed_delivery_is_retried(
        self, task_queue, catalog_provider, sla_defaults_provider, session_factory
    ):
        sink = FakeSink(fail_times=1)
        jobs = BackgroundJobs(task_queue, catalog_provider, sla_defaults_provider, sink, session_factory)
        registry = TaskRegistry()
        jobs.register(registry)
        payload = {"recipient_user_id": str(uuid4()), "title": "Hi", "message": "Hello", "context": {}}

        assert await registry.dispatch(DELIVER_TASK, payload, attempt=1, max_attempts=3) == TaskOutcome.RETRY
        assert await registry.dispatch(DELIVER_TASK, payload, attempt=2, max_attempts=3) == TaskOutcome.COMPLETED
        assert len(sink.sent) == 1


class TestAutoClose:
    async def test_closes_idle_resolved_and_pending(self, services, org, clock):
        resolved = await services.tickets.create(org.customer, TicketCreateDTO(title="Resolved"))
        pending = await services.tickets.create(org.customer, TicketCreateDTO(title="Pending"))
        untouched = await services.tickets.create(org.customer, TicketCreateDTO(title="Open"))
        await services.tickets.update(org.agent, resolved.id, TicketUpdateDTO(status="resolved"))
        await services.tickets.assign(org.agent, pending.id, org.agent.actor_id)

        clock.advance(days=8)
        assert await services.auto_closer.run() == {"resolved": 1, "pending": 0}

        clock.advance(days=7)
        assert await services.auto_closer.run() == {"resolved": 0, "pending": 1}

        for ticket in (resolved, pending):
            ticket = await services.tickets.get(org.agent, ticket.id)
            assert ticket.status == "closed"
            activities = await services.tickets.list_activities(org.agent, ticket.id)
            assert activities[-1].action == "status_changed"
            assert activities[-1].actor_id is None
            assert activities[-1].details["reason"] == AUTO_CLOSE_REASON

        assert (await services.tickets.get(org.agent, untouched.id)).status == "open"

    async def test_recent_activity_keeps_ticket_open(self, services, org, clock):
        ticket = await services.tickets.create(org.customer, TicketCreateDTO(title="Resolved"))
        await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(status="resolved"))

        clock.advance(days=6)
        await services.tickets.update(org.agent, ticket.id, TicketUpdateDTO(priority="high"))
        clock.advance(days=6)

        assert await services.auto_closer.run() == {"resolved": 0, "pending": 0}
