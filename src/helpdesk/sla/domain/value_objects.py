"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.config import OPEN_STATUSES, VALID_PRIORITIES, TicketPriority
from helpdesk.core.clock import deadline_after, ensure_utc


class SLATarget(BaseModel):
    """First-response and resolution targets, in minutes."""
    model_config = ConfigDict(frozen=True)

    first_response_minutes: int = Field(..., ge=1)
    resolution_minutes: int = Field(..., ge=1)


DEFAULT_SLA_TARGETS: Dict[TicketPriority, SLATarget] = {
    TicketPriority.LOW: SLATarget(first_response_minutes=24 * 60, resolution_minutes=72 * 60),
    TicketPriority.MEDIUM: SLATarget(first_response_minutes=8 * 60, resolution_minutes=24 * 60),
    TicketPriority.HIGH: SLATarget(first_response_minutes=4 * 60, resolution_minutes=8 * 60),
    TicketPriority.URGENT: SLATarget(first_response_minutes=60, resolution_minutes=4 * 60),
}


class SLADefaults(BaseModel):
    """
    System-wide SLA targets used when an organization has no policy.

    Loaded once at startup from the ``sla_defaults`` section of the YAML
    config; priorities missing from the file keep the built-in values.
    """
    model_config = ConfigDict(frozen=True)

    targets: Dict[TicketPriority, SLATarget] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_TARGETS)
    )

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: Dict[TicketPriority, SLATarget]) -> Dict[TicketPriority, SLATarget]:
        """Fill in every priority the file leaves out."""
        for priority in VALID_PRIORITIES:
            if priority not in v:
                v[priority] = DEFAULT_SLA_TARGETS[priority]
        return v

    def target_for(self, priority: TicketPriority) -> SLATarget:
        return self.targets[TicketPriority(priority)]


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all deadline and breach logic in one place.
    """

    @staticmethod
    def first_response_minutes(
        priority: TicketPriority,
        defaults: SLADefaults,
        policy_minutes: Optional[int] = None
    ) -> int:
        """Organization policy wins, then the system default for the tier."""
        if policy_minutes is not None:
            return policy_minutes
        return defaults.target_for(priority).first_response_minutes

    @staticmethod
    def calculate_deadline(start: datetime, minutes: int) -> datetime:
        return deadline_after(start, minutes)

    @staticmethod
    def is_breached(
        status: str,
        sla_breached: bool,
        first_response_at: Optional[datetime],
        deadline: Optional[datetime],
        now: datetime
    ) -> bool:
        """
        Whether a check firing at ``now`` should flag a breach.

        False once the flag is already set, so repeated firings never
        produce a second breach.
        """
        if sla_breached or deadline is None or first_response_at is not None:
            return False
        if status not in OPEN_STATUSES:
            return False
        return ensure_utc(now) > ensure_utc(deadline)
