"""
SLA Domain Layer
================

Contains:
- Value Objects: SLATarget, SLADefaults (immutable defaults table)
- Domain Services: SLACalculator (deadline and breach rules)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.sla.domain.value_objects import (
    DEFAULT_SLA_TARGETS,
    SLACalculator,
    SLADefaults,
    SLATarget,
)

__all__ = [
    "DEFAULT_SLA_TARGETS",
    "SLACalculator",
    "SLADefaults",
    "SLATarget",
]
