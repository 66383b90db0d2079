"""
Background Jobs
===============

Deferred task handlers and recurring sweeps.

Each run opens its own session, builds the services it needs and commits
on success; notifications it raised are queued only after that commit. A handler that raises is retried by the task queue; the
handlers re-read state first, so a retry after a partial failure is safe.
"""

from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.billing.application import ROLLOVER_TASK, IPlanCatalogProvider
from helpdesk.config import settings
from helpdesk.container import ServiceContainer
from helpdesk.infrastructure.database import get_session_context
from helpdesk.infrastructure.tasks import APSchedulerTaskQueue, TaskRegistry
from helpdesk.notifications.application import (
    DELIVER_TASK,
    INotificationSink,
    NotificationDeliveryHandler,
)
from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.sla.application import SLA_CHECK_TASK, ISLADefaultsProvider

logger = get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class BackgroundJobs:
    """
    Entry points run by the task queue.

    - ``sla.check``: flag a breach if the ticket still qualifies
    - ``billing.rollover``: roll one organization into its next period
    - ``notifications.deliver``: hand one notification to the sink
    - sweeps: rollover scheduling, auto-close, overdue SLA safety net
    """

    def __init__(
        self,
        task_queue,
        catalog_provider: IPlanCatalogProvider,
        sla_defaults_provider: ISLADefaultsProvider,
        sink: INotificationSink,
        session_factory: Optional[SessionFactory] = None
    ):
        self._task_queue = task_queue
        self._catalog_provider = catalog_provider
        self._sla_defaults_provider = sla_defaults_provider
        self._deliver = NotificationDeliveryHandler(sink)
        self._session_factory = session_factory or get_session_context

    def _services(self, session: AsyncSession) -> ServiceContainer:
        return ServiceContainer(
            session,
            self._task_queue,
            self._catalog_provider,
            self._sla_defaults_provider,
        )

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[ServiceContainer]:
        async with self._session_factory() as session:
            services = self._services(session)
            yield services
        await services.outbox.flush()

    def register(self, registry: TaskRegistry) -> None:
        registry.register(SLA_CHECK_TASK, self.handle_sla_check)
        registry.register(ROLLOVER_TASK, self.handle_rollover)
        registry.register(DELIVER_TASK, self.handle_delivery)

    # ----- deferred tasks -----

    async def handle_sla_check(self, payload: dict) -> None:
        async with self._unit_of_work() as services:
            await services.breach_checker.handle_task(payload)

    async def handle_rollover(self, payload: dict) -> None:
        async with self._unit_of_work() as services:
            await services.subscriptions.handle_rollover(payload)

    async def handle_delivery(self, payload: dict) -> None:
        await self._deliver(payload)

    # ----- recurring sweeps -----

    async def sweep_rollovers(self) -> None:
        with log_latency(logger, "billing.rollover_sweep"):
            async with self._unit_of_work() as services:
                await services.subscriptions.schedule_rollovers()

    async def sweep_auto_close(self) -> None:
        with log_latency(logger, "tickets.auto_close_sweep"):
            async with self._unit_of_work() as services:
                await services.auto_closer.run()

    async def sweep_sla(self) -> None:
        with log_latency(logger, "sla.overdue_sweep"):
            async with self._unit_of_work() as services:
                await services.breach_checker.sweep_overdue()

    def schedule_sweeps(self, task_queue: APSchedulerTaskQueue) -> None:
        """Register the sweeps whose interval is non-zero."""
        sweeps = (
            ("billing-rollover-sweep", self.sweep_rollovers, settings.rollover_sweep_interval),
            ("ticket-auto-close-sweep", self.sweep_auto_close, settings.auto_close_interval),
            ("sla-overdue-sweep", self.sweep_sla, settings.sla_sweep_interval),
        )
        for job_id, func, interval in sweeps:
            if interval > 0:
                task_queue.add_recurring(job_id, func, interval)
            else:
                logger.info("Recurring sweep disabled", extra={"job_id": job_id})
