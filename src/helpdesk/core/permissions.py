"""
Capability Registry
===================

Ordered roles map to capability sets. Operations ask for a capability
instead of listing roles inline.
"""

from enum import Enum
from typing import Dict, FrozenSet

from helpdesk.config import Role
from helpdesk.core.context import ActorContext
from helpdesk.core.exceptions import ForbiddenException


class Capability(str, Enum):
    """Things an actor may be allowed to do."""
    CREATE_TICKET = "create_ticket"
    VIEW_OWN_TICKETS = "view_own_tickets"
    VIEW_ORG_TICKETS = "view_org_tickets"
    UPDATE_TICKET = "update_ticket"
    ASSIGN_TICKET = "assign_ticket"
    CLOSE_TICKET = "close_ticket"
    REOPEN_TICKET = "reopen_ticket"
    POST_REPLY = "post_reply"
    POST_INTERNAL_NOTE = "post_internal_note"
    BULK_UPDATE = "bulk_update"
    BULK_DELETE = "bulk_delete"
    MERGE_TICKETS = "merge_tickets"
    MANAGE_SLA_POLICIES = "manage_sla_policies"
    VIEW_BILLING = "view_billing"
    MANAGE_BILLING = "manage_billing"


_CUSTOMER: FrozenSet[Capability] = frozenset({
    Capability.CREATE_TICKET,
    Capability.VIEW_OWN_TICKETS,
    Capability.CLOSE_TICKET,
    Capability.REOPEN_TICKET,
    Capability.POST_REPLY,
})

_AGENT: FrozenSet[Capability] = _CUSTOMER | {
    Capability.VIEW_ORG_TICKETS,
    Capability.UPDATE_TICKET,
    Capability.ASSIGN_TICKET,
    Capability.POST_INTERNAL_NOTE,
    Capability.BULK_UPDATE,
    Capability.MERGE_TICKETS,
    Capability.VIEW_BILLING,
}

_ADMIN: FrozenSet[Capability] = _AGENT | {
    Capability.BULK_DELETE,
    Capability.MANAGE_SLA_POLICIES,
    Capability.MANAGE_BILLING,
}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.CUSTOMER: _CUSTOMER,
    Role.AGENT: _AGENT,
    Role.ADMIN: _ADMIN,
    Role.OWNER: _ADMIN,
}


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(Role(role), frozenset())


def require_capability(actor: ActorContext, capability: Capability) -> None:
    """Raise ForbiddenException unless the actor's role grants ``capability``."""
    if not has_capability(actor.role, capability):
        raise ForbiddenException(
            "Insufficient permissions",
            {"role": Role(actor.role).value, "capability": capability.value}
        )
