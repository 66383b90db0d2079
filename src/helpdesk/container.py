"""
Service Container
=================

Builds the application services for one unit of work (one database
session). HTTP handlers, deferred task handlers and sweeps all go through
here so every caller gets the same wiring.

Notifications raised while the services run are held in the container's
outbox until whoever owns the session has committed it.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.billing.application import (
    IPlanCatalogProvider,
    PlanResolver,
    QuotaEnforcer,
    SubscriptionManager,
    UsageLedger,
)
from helpdesk.billing.infrastructure import (
    SQLAlchemySubscriptionRepository,
    SQLAlchemyUsageRepository,
)
from helpdesk.config import settings
from helpdesk.core.clock import utcnow
from helpdesk.core.interfaces import IDeferredTaskQueue
from helpdesk.infrastructure.directory import SQLAlchemyMembershipDirectory
from helpdesk.notifications.application import NotificationFanout, NotificationOutbox
from helpdesk.sla.application import ISLADefaultsProvider, SLAPolicyService, SLAScheduler
from helpdesk.sla.infrastructure import SQLAlchemySLAPolicyRepository
from helpdesk.sla.services import SLABreachChecker
from helpdesk.tickets.application import BulkTicketService, TicketService
from helpdesk.tickets.infrastructure import (
    SQLAlchemyActivityRepository,
    SQLAlchemyMessageRepository,
    SQLAlchemyTicketRepository,
)
from helpdesk.tickets.services import TicketAutoCloser


class ServiceContainer:
    """Per-session service graph."""

    def __init__(
        self,
        session: AsyncSession,
        task_queue: IDeferredTaskQueue,
        catalog_provider: IPlanCatalogProvider,
        sla_defaults_provider: ISLADefaultsProvider,
        strict_quota: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session = session
        self.task_queue = task_queue
        self.clock = clock

        self.directory = SQLAlchemyMembershipDirectory(session)
        self.outbox = NotificationOutbox(task_queue)
        self.notifier = NotificationFanout(task_queue, self.directory, clock=clock, outbox=self.outbox)

        # Billing
        self.subscription_repository = SQLAlchemySubscriptionRepository(session)
        self.usage_repository = SQLAlchemyUsageRepository(session)
        self.plans = PlanResolver(self.subscription_repository, catalog_provider)
        self.ledger = UsageLedger(self.usage_repository, self.plans, clock)
        self.quota = QuotaEnforcer(self.ledger, self.plans, self.notifier, settings.billing_upgrade_url)
        self.subscriptions = SubscriptionManager(
            self.subscription_repository, self.ledger, self.plans, task_queue, clock
        )

        # SLA
        self.sla_policies = SLAPolicyService(
            SQLAlchemySLAPolicyRepository(session), sla_defaults_provider, clock
        )
        self.sla_scheduler = SLAScheduler(self.sla_policies, task_queue, clock)

        # Tickets
        self.ticket_repository = SQLAlchemyTicketRepository(session)
        self.activity_repository = SQLAlchemyActivityRepository(session)
        self.message_repository = SQLAlchemyMessageRepository(session)
        self.tickets = TicketService(
            self.ticket_repository,
            self.activity_repository,
            self.message_repository,
            self.quota,
            self.sla_scheduler,
            self.notifier,
            self.directory,
            strict_quota=strict_quota,
            clock=clock,
        )
        self.bulk = BulkTicketService(self.tickets)

        # Background
        self.breach_checker = SLABreachChecker(
            self.ticket_repository, self.activity_repository, self.notifier, clock
        )
        self.auto_closer = TicketAutoCloser(
            self.ticket_repository, self.activity_repository, clock=clock
        )