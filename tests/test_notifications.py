"""
Tests for notification fan-out, delivery sinks and catalog loading.
"""

import json
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional
from uuid import UUID, uuid4

import httpx
import pytest

from helpdesk.billing.domain import PlanCatalog
from helpdesk.billing.infrastructure import YAMLPlanCatalogProvider
from helpdesk.config import NotificationEvent, Role
from helpdesk.core.exceptions import ConfigurationException, NotificationDeliveryException
from helpdesk.core.interfaces import IMembershipDirectory, MemberInfo
from helpdesk.notifications.application import (
    DELIVER_TASK,
    NotificationDeliveryHandler,
    NotificationFanout,
    NotificationOutbox,
    unique_recipients,
)
from helpdesk.notifications.domain import Notification
from helpdesk.notifications.infrastructure.external import (
    CircuitState,
    WebhookCircuitBreaker,
    WebhookNotificationSink,
)
from helpdesk.sla.domain import SLADefaults
from helpdesk.sla.infrastructure import YAMLSLADefaultsProvider

from conftest import T0, Clock

SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "helpdesk_config.yaml"


class StaticDirectory(IMembershipDirectory):
    def __init__(self, admins: List[UUID]):
        self._admins = admins

    async def get_member(self, organization_id: UUID, user_id: UUID) -> Optional[MemberInfo]:
        if user_id in self._admins:
            return MemberInfo(user_id, organization_id, Role.ADMIN)
        return None

    async def list_admin_ids(self, organization_id: UUID) -> List[UUID]:
        return list(self._admins)


def make_notification(**overrides) -> Notification:
    fields = dict(
        recipient_user_id=uuid4(),
        title="Ticket assigned",
        message="You have been assigned ticket #7",
        context={"event": "ticket_assigned", "ticket_number": 7},
    )
    fields.update(overrides)
    return Notification(**fields)


class TestFanout:
    def test_unique_recipients(self):
        a, b, actor = uuid4(), uuid4(), uuid4()
        assert unique_recipients([a, None, b, a, actor], exclude=actor) == [a, b]

    async def test_one_task_per_recipient(self, task_queue):
        admins = [uuid4(), uuid4()]
        fanout = NotificationFanout(task_queue, StaticDirectory(admins))

        queued = await fanout.fan_out(
            NotificationEvent.STATUS_CHANGED,
            event_key="t-1:open:pending",
            recipients=[admins[0], admins[1], admins[0]],
            title="Status",
            message="Changed",
            context={"ticket_id": "t-1"},
        )

        assert queued == admins
        tasks = task_queue.named(DELIVER_TASK)
        assert [t.payload["recipient_user_id"] for t in tasks] == [str(a) for a in admins]
        assert tasks[0].payload["context"] == {"event": "status_changed", "ticket_id": "t-1"}
        assert tasks[0].dedupe_key == f"notify:status_changed:t-1:open:pending:{admins[0]}"

    async def test_replayed_event_is_not_queued_twice(self, task_queue):
        admins = [uuid4()]
        fanout = NotificationFanout(task_queue, StaticDirectory(admins))
        organization_id = uuid4()

        first = await fanout.notify_usage_alert(organization_id, "tickets", 40, 50, 80, "2026-03-02")
        second = await fanout.notify_usage_alert(organization_id, "tickets", 41, 50, 82, "2026-03-02")

        assert first == admins
        assert second == []
        assert len(task_queue.named(DELIVER_TASK)) == 1

    async def test_actor_is_not_notified_of_own_change(self, task_queue):
        customer, agent = uuid4(), uuid4()
        fanout = NotificationFanout(task_queue, StaticDirectory([]))
        ticket = SimpleNamespace(
            id=uuid4(), organization_id=uuid4(), number=3, title="Broken",
            customer_id=customer, assignee_id=agent,
        )

        queued = await fanout.notify_status_change(ticket, customer, "open", "closed")

        assert queued == [agent]

    async def test_unassigned_ticket_has_no_assignment_notice(self, task_queue):
        fanout = NotificationFanout(task_queue, StaticDirectory([]))
        ticket = SimpleNamespace(id=uuid4(), assignee_id=None)

        assert await fanout.notify_assignment(ticket, uuid4()) == []
        assert task_queue.tasks == []


class TestOutbox:
    async def test_held_until_flush(self, task_queue):
        outbox = NotificationOutbox(task_queue)
        fanout = NotificationFanout(task_queue, StaticDirectory([uuid4()]), outbox=outbox)

        held = await fanout.notify_usage_alert(uuid4(), "tickets", 40, 50, 80, "2026-03-02")

        assert len(held) == 1
        assert task_queue.tasks == []
        assert await outbox.flush() == 1
        assert len(task_queue.named(DELIVER_TASK)) == 1
        assert len(outbox) == 0

    async def test_same_key_is_held_once(self, task_queue):
        outbox = NotificationOutbox(task_queue)
        fanout = NotificationFanout(task_queue, StaticDirectory([uuid4()]), outbox=outbox)
        organization_id = uuid4()

        await fanout.notify_usage_alert(organization_id, "tickets", 40, 50, 80, "2026-03-02")
        assert await fanout.notify_usage_alert(organization_id, "tickets", 41, 50, 82, "2026-03-02") == []
        assert len(outbox) == 1

    async def test_failed_scope_drops_only_its_deliveries(self, task_queue):
        outbox = NotificationOutbox(task_queue)
        fanout = NotificationFanout(task_queue, StaticDirectory([uuid4()]), outbox=outbox)
        kept, dropped = uuid4(), uuid4()

        with fanout.scope():
            await fanout.notify_usage_alert(kept, "tickets", 40, 50, 80, "2026-03-02")
        with pytest.raises(RuntimeError):
            with fanout.scope():
                await fanout.notify_usage_alert(dropped, "tickets", 40, 50, 80, "2026-03-02")
                raise RuntimeError("savepoint rolled back")

        await outbox.flush()
        [task] = task_queue.named(DELIVER_TASK)
        assert task.payload["context"]["organization_id"] == str(kept)

    async def test_discard_after_rollback(self, task_queue):
        outbox = NotificationOutbox(task_queue)
        fanout = NotificationFanout(task_queue, StaticDirectory([uuid4()]), outbox=outbox)

        await fanout.notify_usage_alert(uuid4(), "tickets", 40, 50, 80, "2026-03-02")
        outbox.discard()

        assert await outbox.flush() == 0
        assert task_queue.tasks == []

    async def test_event_keys_use_the_injected_clock(self, task_queue):
        clock = Clock(T0)
        fanout = NotificationFanout(task_queue, StaticDirectory([]), clock=clock)
        ticket = SimpleNamespace(
            id=uuid4(), organization_id=uuid4(), number=3, title="Broken",
            customer_id=uuid4(), assignee_id=uuid4(),
        )

        await fanout.notify_assignment(ticket, None)

        [task] = task_queue.named(DELIVER_TASK)
        assert task.fire_at == T0
        assert task.dedupe_key == f"notify:ticket_assigned:{ticket.id}:{ticket.assignee_id}:{T0.isoformat()}:{ticket.assignee_id}"

class TestDelivery:
    def test_payload_is_json_safe(self):
        notification = make_notification()
        payload = notification.to_payload()

        assert json.loads(json.dumps(payload)) == payload
        assert Notification.from_payload(payload) == notification

    async def test_handler_hands_notification_to_sink(self, sink):
        notification = make_notification()
        await NotificationDeliveryHandler(sink)(notification.to_payload())
        assert sink.sent == [notification]


class TestWebhookSink:
    async def test_posts_json(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookNotificationSink("https://hooks.example.test/notify", http_client=client)
        notification = make_notification()

        await sink.send(notification)
        await sink.close()

        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body["recipientUserId"] == str(notification.recipient_user_id)
        assert body["context"]["event"] == "ticket_assigned"

    async def test_failure_raises_and_opens_circuit(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookNotificationSink(
            "https://hooks.example.test/notify",
            max_retries=1,
            circuit_breaker=WebhookCircuitBreaker(failure_threshold=1, recovery_timeout=60),
            http_client=client,
        )

        with pytest.raises(NotificationDeliveryException):
            await sink.send(make_notification())
        with pytest.raises(NotificationDeliveryException) as exc_info:
            await sink.send(make_notification())

        assert exc_info.value.message == "Notification Sink: Circuit breaker open"
        assert len(calls) == 1
        await sink.close()

    async def test_rejected_payload_is_not_resent_in_call(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(422)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookNotificationSink("https://hooks.example.test/notify", max_retries=3, http_client=client)

        with pytest.raises(NotificationDeliveryException) as exc_info:
            await sink.send(make_notification())

        assert exc_info.value.message == "Notification Sink: HTTP 422"
        assert len(calls) == 1
        await sink.close()


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestWebhookCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = WebhookCircuitBreaker(failure_threshold=2, recovery_timeout=30, monotonic=FakeMonotonic())

        breaker.record_failure()
        assert breaker.acquire() is True
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.acquire() is False
        assert breaker.retry_after() == 30

    def test_success_resets_the_count(self):
        breaker = WebhookCircuitBreaker(failure_threshold=2, recovery_timeout=30, monotonic=FakeMonotonic())

        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED

    def test_single_trial_when_half_open(self):
        clock = FakeMonotonic()
        breaker = WebhookCircuitBreaker(failure_threshold=1, recovery_timeout=30, monotonic=clock)
        breaker.record_failure()

        clock.now += 30
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() is True
        assert breaker.acquire() is False

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.acquire() is True

    def test_failed_trial_reopens(self):
        clock = FakeMonotonic()
        breaker = WebhookCircuitBreaker(failure_threshold=3, recovery_timeout=30, monotonic=clock)
        for _ in range(3):
            breaker.record_failure()

        clock.now += 31
        assert breaker.acquire() is True
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.retry_after() == 30

    async def test_open_circuit_reports_retry_after(self):
        clock = FakeMonotonic()
        breaker = WebhookCircuitBreaker(failure_threshold=1, recovery_timeout=30, monotonic=clock)
        breaker.record_failure()
        clock.now += 10
        sink = WebhookNotificationSink("https://hooks.example.test/notify", circuit_breaker=breaker)

        with pytest.raises(NotificationDeliveryException) as exc_info:
            await sink.send(make_notification())

        assert exc_info.value.details["retry_after_seconds"] == 20


class TestCatalogLoading:
    def test_shipped_config_matches_builtins(self):
        catalog = YAMLPlanCatalogProvider(SHIPPED_CONFIG).load()
        builtin = PlanCatalog()

        assert [p.id for p in catalog.list()] == ["free", "pro", "enterprise"]
        for plan in builtin.plans:
            assert catalog.get(plan.id).limits == plan.limits
            assert catalog.get(plan.id).price == plan.price
        assert catalog.get_default().id == "free"

        assert YAMLSLADefaultsProvider(SHIPPED_CONFIG).load() == SLADefaults()

    def test_missing_file_uses_builtins(self, tmp_path):
        provider = YAMLPlanCatalogProvider(tmp_path / "absent.yaml")
        assert provider.get_catalog() == PlanCatalog()
        assert YAMLSLADefaultsProvider(tmp_path / "absent.yaml").get_defaults() == SLADefaults()

    def test_two_default_plans_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "plans:\n"
            "  - {id: free, slug: free, name: Free, is_default: true}\n"
            "  - {id: basic, slug: basic, name: Basic, is_default: true}\n"
        )

        with pytest.raises(ConfigurationException):
            YAMLPlanCatalogProvider(path).load()

    def test_partial_sla_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "sla_defaults:\n"
            "  targets:\n"
            "    urgent: {first_response_minutes: 30, resolution_minutes: 120}\n"
        )

        defaults = YAMLSLADefaultsProvider(path).load()

        assert defaults.target_for("urgent").first_response_minutes == 30
        assert defaults.target_for("low").first_response_minutes == 1440

    def test_invalid_sla_target_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "sla_defaults:\n"
            "  targets:\n"
            "    high: {first_response_minutes: 0, resolution_minutes: 60}\n"
        )

        with pytest.raises(ConfigurationException):
            YAMLSLADefaultsProvider(path).load()
