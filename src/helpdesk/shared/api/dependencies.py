"""
Shared API Dependencies
=======================

FastAPI dependencies for the caller identity and the per-request
service container.
"""

from typing import AsyncGenerator, Optional
from uuid import UUID

from fastapi import Header, Request

from helpdesk.config import Role
from helpdesk.container import ServiceContainer
from helpdesk.core.context import ActorContext
from helpdesk.core.exceptions import BadRequestException
from helpdesk.infrastructure.database import get_session_context


def _parse_uuid(value: Optional[str], header: str) -> UUID:
    if not value:
        raise BadRequestException(f"Missing {header} header")
    try:
        return UUID(value)
    except ValueError:
        raise BadRequestException(f"Invalid {header} header", {"value": value})


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_organization_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> ActorContext:
    """
    Caller identity as forwarded by the gateway.

    Raises:
        BadRequestException: Missing or malformed identity headers
    """
    try:
        role = Role(x_user_role) if x_user_role else Role.CUSTOMER
    except ValueError:
        raise BadRequestException("Invalid X-User-Role header", {"value": x_user_role})

    return ActorContext(
        actor_id=_parse_uuid(x_user_id, "X-User-Id"),
        organization_id=_parse_uuid(x_organization_id, "X-Organization-Id"),
        role=role,
    )


async def get_services(request: Request) -> AsyncGenerator[ServiceContainer, None]:
    """
    Service graph bound to the request session.

    The session commits when the handler returns and rolls back when it
    raises; held notifications are queued only after a successful commit.
    """
    state = request.app.state
    async with get_session_context() as session:
        services = ServiceContainer(
            session,
            state.task_queue,
            state.catalog_provider,
            state.sla_defaults_provider,
        )
        yield services
    await services.outbox.flush()
