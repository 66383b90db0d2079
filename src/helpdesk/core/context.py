"""Caller identity passed into every mutating operation."""

from dataclasses import dataclass
from uuid import UUID

from helpdesk.config import Role


@dataclass(frozen=True)
class ActorContext:
    """
    Who is calling and on behalf of which organization.

    Identity and session validation happen upstream; the core trusts these
    values.
    """
    actor_id: UUID
    organization_id: UUID
    role: Role

    @property
    def is_customer(self) -> bool:
        return self.role == Role.CUSTOMER

    @property
    def is_staff(self) -> bool:
        """Agents, admins and owners."""
        return self.role.at_least(Role.AGENT)
