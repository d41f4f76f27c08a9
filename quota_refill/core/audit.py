"""
Audit emission for refills.

Builds the key.update event describing a refill and hands it to a sink.
The actor is always of type "system". Only its id label is configurable,
and it defaults to "trigger".
"""

from datetime import datetime, timezone
from typing import Optional

from quota_refill.audit.ingest import AuditSink
from quota_refill.errors import AuditIngestError
from quota_refill.storage.models import AuditActor, AuditEvent, AuditResource, Key

KEY_UPDATE_EVENT = "key.update"
SYSTEM_ACTOR_TYPE = "system"
DEFAULT_ACTOR_ID = "trigger"
DEFAULT_LOCATION = "trigger"


def build_refill_audit_event(
    key: Key,
    amount: int,
    actor_id: str = DEFAULT_ACTOR_ID,
    location: str = DEFAULT_LOCATION,
    now: Optional[datetime] = None
) -> AuditEvent:
    """Build the audit event for one refill.

    Args:
        key: Key that was refilled
        amount: Quota the key was refilled to
        actor_id: Id label of the system actor
        location: Origin tag stored in the event context
        now: Event time (defaults to current UTC time)

    Returns:
        AuditEvent referencing the key's workspace and the key
    """
    return AuditEvent(
        workspace_id=key.workspace_id,
        event=KEY_UPDATE_EVENT,
        actor=AuditActor(type=SYSTEM_ACTOR_TYPE, id=actor_id),
        description=f"Refilled {key.id} to {amount}",
        resources=(
            AuditResource(type="workspace", id=key.workspace_id),
            AuditResource(type="key", id=key.id),
        ),
        time=now or datetime.now(timezone.utc),
        context={"location": location}
    )


def emit_refill_audit(
    sink: AuditSink,
    key: Key,
    amount: int,
    actor_id: str = DEFAULT_ACTOR_ID,
    location: str = DEFAULT_LOCATION,
    now: Optional[datetime] = None
) -> AuditEvent:
    """Record exactly one audit event for a refill that already happened.

    Returns:
        The event that was ingested

    Raises:
        AuditIngestError: If the sink rejects the event or cannot be reached
    """
    event = build_refill_audit_event(key, amount, actor_id, location, now)
    try:
        sink.ingest(event)
    except AuditIngestError:
        raise
    except Exception as e:
        raise AuditIngestError(str(e), "create audit log", key.id) from e
    return event
