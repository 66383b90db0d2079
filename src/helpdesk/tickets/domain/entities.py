"""
Ticket Domain Entities
======================
"""

from dataclasses import dataclass, field
from typing import Any, Dict

from helpdesk.config import ActivityAction


@dataclass(frozen=True)
class ActivityDraft:
    """An activity the state machine wants appended to the timeline."""
    action: ActivityAction
    metadata: Dict[str, Any] = field(default_factory=dict)
