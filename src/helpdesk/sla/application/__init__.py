"""
SLA Application Layer
======================

Contains:
- Services: SLAPolicyService (policy CRUD), SLAScheduler (deadline arming)
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.sla.application.dto import (
    SLAPolicyCreateDTO,
    SLAPolicyResponse,
    SLAPolicyUpdateDTO,
)
from helpdesk.sla.application.services import (
    SLA_CHECK_TASK,
    ISLADefaultsProvider,
    ISLAPolicyRepository,
    SLAPolicyService,
    SLAScheduler,
)

__all__ = [
    "SLAPolicyCreateDTO",
    "SLAPolicyResponse",
    "SLAPolicyUpdateDTO",
    "SLA_CHECK_TASK",
    "ISLADefaultsProvider",
    "ISLAPolicyRepository",
    "SLAPolicyService",
    "SLAScheduler",
]
