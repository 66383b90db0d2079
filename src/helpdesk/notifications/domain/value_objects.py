"""
Notification Value Objects
==========================
"""

from dataclasses import dataclass, field
from typing import Any, Dict
from uuid import UUID


@dataclass(frozen=True)
class Notification:
    """What the outbound sink receives for one recipient."""
    recipient_user_id: UUID
    title: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Plain JSON-safe dict for the task store."""
        return {
            "recipient_user_id": str(self.recipient_user_id),
            "title": self.title,
            "message": self.message,
            "context": dict(self.context),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Notification":
        return cls(
            recipient_user_id=UUID(str(payload["recipient_user_id"])),
            title=payload["title"],
            message=payload["message"],
            context=dict(payload.get("context") or {}),
        )
