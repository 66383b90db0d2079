"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with savepoint support (fresh per test)
- Recording fakes for the deferred task queue and the notification sink
- A settable clock shared by every service
- An organization with an owner, an admin, two agents and two customers,
  subscribed to the Free plan
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, List, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from helpdesk.billing.domain import PlanCatalog
from helpdesk.billing.infrastructure import YAMLPlanCatalogProvider
from helpdesk.config import Role
from helpdesk.container import ServiceContainer
from helpdesk.core.context import ActorContext
from helpdesk.core.interfaces import IDeferredTaskQueue
from helpdesk.infrastructure.database import Base, build_session_maker, enable_sqlite_savepoints
from helpdesk.infrastructure.directory import MembershipModel
from helpdesk.notifications.application import INotificationSink
from helpdesk.notifications.domain import Notification
from helpdesk.sla.domain import SLADefaults
from helpdesk.sla.infrastructure import YAMLSLADefaultsProvider

import helpdesk.models  # noqa: F401  (registers every table on Base.metadata)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================

@dataclass
class ScheduledTask:
    name: str
    payload: dict
    fire_at: datetime
    dedupe_key: str


class FakeTaskQueue(IDeferredTaskQueue):
    """Records scheduled tasks; a pending dedupe key is never scheduled twice."""

    def __init__(self):
        self.tasks: List[ScheduledTask] = []
        self._pending: Dict[str, ScheduledTask] = {}

    async def schedule(
        self,
        name: str,
        payload: dict,
        fire_at: datetime,
        dedupe_key: Optional[str] = None
    ) -> Optional[str]:
        key = dedupe_key or uuid4().hex
        if key in self._pending:
            return None
        task = ScheduledTask(name, payload, fire_at, key)
        self._pending[key] = task
        self.tasks.append(task)
        return key

    def named(self, name: str) -> List[ScheduledTask]:
        return [task for task in self.tasks if task.name == name]

    def complete(self, task: ScheduledTask) -> None:
        """Drop a task from the pending set, as if it ran."""
        self._pending.pop(task.dedupe_key, None)


class FakeSink(INotificationSink):
    def __init__(self, fail_times: int = 0):
        self.sent: List[Notification] = []
        self._fail_times = fail_times

    async def send(self, notification: Notification) -> None:
        if self._fail_times > 0:
            self._fail_times -= 1
            raise RuntimeError("transport unavailable")
        self.sent.append(notification)

    async def close(self) -> None:
        pass


class Clock:
    """Settable clock; every service in a test reads the same instant."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class Organization:
    id: UUID
    owner: ActorContext
    admin: ActorContext
    agent: ActorContext
    other_agent: ActorContext
    customer: ActorContext
    other_customer: ActorContext
    members: Dict[str, ActorContext] = field(default_factory=dict)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    async with build_session_maker(engine)() as session:
        yield session
        await session.rollback()


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def task_queue() -> FakeTaskQueue:
    return FakeTaskQueue()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def catalog_provider() -> YAMLPlanCatalogProvider:
    return YAMLPlanCatalogProvider(catalog=PlanCatalog())


@pytest.fixture
def sla_defaults_provider() -> YAMLSLADefaultsProvider:
    return YAMLSLADefaultsProvider(defaults=SLADefaults())


@pytest.fixture
def make_services(session, task_queue, catalog_provider, sla_defaults_provider, clock):
    def factory(strict_quota: bool = False) -> ServiceContainer:
        return ServiceContainer(
            session,
            task_queue,
            catalog_provider,
            sla_defaults_provider,
            strict_quota=strict_quota,
            clock=clock,
        )
    return factory


@pytest.fixture
def services(make_services) -> ServiceContainer:
    return make_services()


# =============================================================================
# Organization Fixtures
# =============================================================================

async def add_members(session: AsyncSession, organization_id: UUID, roles: Dict[str, Role]) -> Dict[str, ActorContext]:
    actors = {}
    for name, role in roles.items():
        user_id = uuid4()
        session.add(MembershipModel(
            organization_id=organization_id,
            user_id=user_id,
            role=role.value,
            display_name=name.replace("_", " ").title(),
            created_at=T0,
        ))
        actors[name] = ActorContext(actor_id=user_id, organization_id=organization_id, role=role)
    await session.flush()
    return actors


ORG_ROLES = {
    "owner": Role.OWNER,
    "admin": Role.ADMIN,
    "agent": Role.AGENT,
    "other_agent": Role.AGENT,
    "customer": Role.CUSTOMER,
    "other_customer": Role.CUSTOMER,
}


@pytest.fixture
async def org(session, services) -> Organization:
    """Organization on the Free plan with one member per role."""
    organization_id = uuid4()
    actors = await add_members(session, organization_id, ORG_ROLES)
    await services.subscriptions.create_for_organization(organization_id)
    return Organization(id=organization_id, members=actors, **actors)


@pytest.fixture
async def other_org(session, services) -> Organization:
    organization_id = uuid4()
    actors = await add_members(session, organization_id, ORG_ROLES)
    await services.subscriptions.create_for_organization(organization_id)
    return Organization(id=organization_id, members=actors, **actors)
