"""
SLA Infrastructure Layer
=========================

- Models: SQLAlchemy ORM models
- Repositories: Policy data access and the YAML defaults provider
"""

from helpdesk.sla.infrastructure.models import SLAPolicyModel
from helpdesk.sla.infrastructure.repositories import (
    SQLAlchemySLAPolicyRepository,
    YAMLSLADefaultsProvider,
)

__all__ = [
    "SLAPolicyModel",
    "SQLAlchemySLAPolicyRepository",
    "YAMLSLADefaultsProvider",
]
