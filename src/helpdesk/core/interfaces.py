"""
Collaborator Interfaces
=======================

Abstractions the core consumes from its surroundings. Concrete adapters
live under ``helpdesk.infrastructure``; tests provide in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from helpdesk.config import Role


class IDeferredTaskQueue(ABC):
    """Durable, at-least-once scheduling of named tasks."""

    @abstractmethod
    async def schedule(
        self,
        name: str,
        payload: dict,
        fire_at: datetime,
        dedupe_key: Optional[str] = None
    ) -> Optional[str]:
        """
        Schedule ``name`` to run with ``payload`` at ``fire_at``.

        Returns the task id, or None when a task with the same
        ``dedupe_key`` is already pending.
        """


@dataclass(frozen=True)
class MemberInfo:
    """A user's membership in one organization."""
    user_id: UUID
    organization_id: UUID
    role: Role
    display_name: Optional[str] = None


class IMembershipDirectory(ABC):
    """Read access to organization membership (owned by another service)."""

    @abstractmethod
    async def get_member(self, organization_id: UUID, user_id: UUID) -> Optional[MemberInfo]:
        """Return the membership of ``user_id`` in the organization, if any."""

    @abstractmethod
    async def list_admin_ids(self, organization_id: UUID) -> List[UUID]:
        """User ids holding admin or owner in the organization."""
