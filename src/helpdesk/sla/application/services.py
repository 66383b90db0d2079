"""
SLA Application Services
=========================

Policy management and deadline arming.

Following SOLID principles:
- Single Responsibility: policy CRUD and deadline arming are separate services
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, List, Optional
from uuid import UUID

from helpdesk.config import VALID_PRIORITIES, TicketPriority
from helpdesk.core.clock import utcnow
from helpdesk.core.exceptions import ResourceNotFoundException
from helpdesk.core.interfaces import IDeferredTaskQueue
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application.dto import SLAPolicyCreateDTO, SLAPolicyUpdateDTO
from helpdesk.sla.domain import SLACalculator, SLADefaults

logger = get_logger(__name__)

SLA_CHECK_TASK = "sla.check"


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLAPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def list(self, organization_id: UUID) -> List[Any]:
        """All policies of the organization."""

    @abstractmethod
    async def get_by_id(self, organization_id: UUID, policy_id: UUID) -> Optional[Any]:
        """Get a policy scoped to the organization."""

    @abstractmethod
    async def get_default_for_priority(self, organization_id: UUID, priority: TicketPriority) -> Optional[Any]:
        """The organization's default policy for a priority tier."""

    @abstractmethod
    async def add(self, policy: Any) -> Any:
        """Persist a new policy."""

    @abstractmethod
    async def save(self, policy: Any) -> Any:
        """Flush changes to a loaded policy."""

    @abstractmethod
    async def delete(self, policy: Any) -> None:
        """Remove a policy."""


class ISLADefaultsProvider(ABC):
    """Interface for system SLA defaults."""

    @abstractmethod
    def get_defaults(self) -> SLADefaults:
        """Get the loaded defaults table."""


class SLAPolicyService:
    """
    Organization SLA policy management.

    Creating a policy for a priority that already has a default updates that
    policy in place, keeping one default per tier.
    """

    def __init__(
        self,
        policy_repository: ISLAPolicyRepository,
        defaults_provider: ISLADefaultsProvider,
        clock: Callable[[], datetime] = utcnow
    ):
        self._policies = policy_repository
        self._defaults_provider = defaults_provider
        self._clock = clock

    @property
    def defaults(self) -> SLADefaults:
        return self._defaults_provider.get_defaults()

    async def list(self, organization_id: UUID) -> List[Any]:
        return await self._policies.list(organization_id)

    async def get(self, organization_id: UUID, policy_id: UUID) -> Any:
        policy = await self._policies.get_by_id(organization_id, policy_id)
        if policy is None:
            raise ResourceNotFoundException("SLA policy", str(policy_id))
        return policy

    async def get_by_priority(self, organization_id: UUID, priority: TicketPriority) -> Optional[Any]:
        return await self._policies.get_default_for_priority(organization_id, priority)

    async def first_response_minutes(self, organization_id: UUID, priority: TicketPriority) -> int:
        """Organization default policy for the tier, else the system default."""
        policy = await self._policies.get_default_for_priority(organization_id, priority)
        return SLACalculator.first_response_minutes(
            priority,
            self.defaults,
            policy.first_response_time if policy is not None else None,
        )

    async def upsert(self, organization_id: UUID, data: SLAPolicyCreateDTO) -> Any:
        from helpdesk.sla.infrastructure.models import SLAPolicyModel

        now = self._clock()
        existing = await self._policies.get_default_for_priority(organization_id, data.priority)
        if existing is not None:
            existing.name = data.name
            existing.first_response_time = data.first_response_time
            existing.resolution_time = data.resolution_time
            existing.business_hours_only = data.business_hours_only
            existing.updated_at = now
            return await self._policies.save(existing)

        policy = SLAPolicyModel(
            organization_id=organization_id,
            name=data.name,
            priority=TicketPriority(data.priority).value,
            first_response_time=data.first_response_time,
            resolution_time=data.resolution_time,
            business_hours_only=data.business_hours_only,
            is_default=True,
            created_at=now,
            updated_at=now,
        )
        policy = await self._policies.add(policy)
        logger.info(
            "SLA policy created",
            extra={"organization_id": str(organization_id), "priority": policy.priority}
        )
        return policy

    async def update(self, organization_id: UUID, policy_id: UUID, data: SLAPolicyUpdateDTO) -> Any:
        policy = await self.get(organization_id, policy_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(policy, field, value)
        policy.updated_at = self._clock()
        return await self._policies.save(policy)

    async def remove(self, organization_id: UUID, policy_id: UUID) -> None:
        policy = await self.get(organization_id, policy_id)
        await self._policies.delete(policy)

    async def initialize_defaults(self, organization_id: UUID) -> List[Any]:
        """Materialize the system defaults as policies for every missing tier."""
        created = []
        for priority in VALID_PRIORITIES:
            if await self._policies.get_default_for_priority(organization_id, priority) is not None:
                continue
            target = self.defaults.target_for(priority)
            created.append(await self.upsert(
                organization_id,
                SLAPolicyCreateDTO(
                    name=f"{priority.value.title()} priority",
                    priority=priority.value,
                    first_response_time=target.first_response_minutes,
                    resolution_time=target.resolution_minutes,
                ),
            ))
        return created


class SLAScheduler:
    """
    Arms deferred breach checks.

    There is no disarm: a check that fires after the ticket was answered,
    resolved, closed or re-armed re-reads the ticket and does nothing.
    """

    def __init__(
        self,
        policy_service: SLAPolicyService,
        task_queue: IDeferredTaskQueue,
        clock: Callable[[], datetime] = utcnow
    ):
        self._policies = policy_service
        self._task_queue = task_queue
        self._clock = clock

    async def compute_deadline(self, organization_id: UUID, priority: TicketPriority, start: datetime) -> datetime:
        minutes = await self._policies.first_response_minutes(organization_id, priority)
        return SLACalculator.calculate_deadline(start, minutes)

    async def arm(self, ticket: Any, start: Optional[datetime] = None) -> datetime:
        """
        Set ``ticket.sla_deadline`` from ``start`` (default now) and schedule
        the check for that instant.
        """
        start = start or self._clock()
        deadline = await self.compute_deadline(ticket.organization_id, ticket.priority, start)
        ticket.sla_deadline = deadline

        await self._task_queue.schedule(
            SLA_CHECK_TASK,
            {"ticket_id": str(ticket.id), "deadline": deadline.isoformat()},
            deadline,
            dedupe_key=f"sla-check:{ticket.id}:{deadline.isoformat()}",
        )
        logger.debug(
            "SLA check armed",
            extra={"ticket_id": str(ticket.id), "deadline": deadline.isoformat()}
        )
        return deadline

    async def rearm(self, ticket: Any) -> datetime:
        """Re-arm from now (used on reopen)."""
        return await self.arm(ticket, self._clock())
