"""
Data models for storage layer.

Defines quota keys and the audit records written for each refill.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Key:
    """Quota-bearing key as stored in the key table.

    A key is a refill candidate only while it is not deleted, has a
    refill amount, and its remaining quota is below that amount.
    """
    id: str
    workspace_id: str
    refill_amount: Optional[int] = None
    remaining: Optional[int] = None
    refill_day: Optional[int] = None
    last_refill_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate refill policy values."""
        if not self.id:
            raise ValueError("key id is required")
        if not self.workspace_id:
            raise ValueError("workspace_id is required")
        if self.refill_amount is not None and self.refill_amount <= 0:
            raise ValueError("refill_amount must be > 0")
        if self.refill_day is not None and not 1 <= self.refill_day <= 31:
            raise ValueError("refill_day must be between 1 and 31")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def needs_refill(self) -> bool:
        """True when the key has a refill policy and is below its amount."""
        if self.is_deleted or self.refill_amount is None:
            return False
        if self.remaining is None:
            return False
        return self.remaining < self.refill_amount


@dataclass(frozen=True)
class AuditActor:
    """Who performed an audited action."""
    type: str
    id: str


@dataclass(frozen=True)
class AuditResource:
    """A resource referenced by an audit event."""
    type: str
    id: str


@dataclass(frozen=True)
class AuditEvent:
    """Immutable audit record describing one change.

    Append-only: once ingested an event is never modified or deleted.
    """
    workspace_id: str
    event: str
    actor: AuditActor
    description: str
    resources: Tuple[AuditResource, ...]
    time: datetime
    context: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Render the event as a JSON-ready dictionary."""
        return {
            "workspaceId": self.workspace_id,
            "event": self.event,
            "time": int(self.time.timestamp() * 1000),
            "actor": {"type": self.actor.type, "id": self.actor.id},
            "description": self.description,
            "resources": [
                {"type": resource.type, "id": resource.id}
                for resource in self.resources
            ],
            "context": dict(self.context),
        }
