"""
Daily refill reconciliation.

Runs one refill pass: classify the day, select due keys, then refill and
audit each key in order.

Failure policy:
1. Selection failure - the run aborts, nothing is refilled
2. Refill failure - the key is skipped for audit and left out of the result
3. Audit failure - the refill stands, the key stays in the result
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, Union

from .audit import DEFAULT_ACTOR_ID, DEFAULT_LOCATION, emit_refill_audit
from .dates import DayClassification, classify_day
from .refill import refill_key
from .selection import select_due_keys
from quota_refill.audit.ingest import AuditSink
from quota_refill.errors import AuditIngestError, UpdateError
from quota_refill.logger import get_logger
from quota_refill.storage.repository import KeyRepository

log = get_logger("quota_refill.reconcile")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class KeyFailure:
    """A per-key failure recorded during a run."""
    key_id: str
    operation: str
    message: str


@dataclass
class RefillRunResult:
    """Outcome of one reconciliation run."""
    classification: DayClassification
    selected_count: int = 0
    refilled_key_ids: List[str] = field(default_factory=list)
    refill_failures: List[KeyFailure] = field(default_factory=list)
    audit_failures: List[KeyFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.refill_failures and not self.audit_failures


def run_daily_refill(
    reference: Union[datetime, date],
    repository: KeyRepository,
    audit_sink: AuditSink,
    clock: Callable[[], datetime] = _utcnow,
    actor_id: str = DEFAULT_ACTOR_ID,
    location: str = DEFAULT_LOCATION
) -> RefillRunResult:
    """
    Refill every key that is due on the reference date.

    Keys are processed one at a time in the order the store returns them.
    Each key is refilled first and audited second; the audit is never
    attempted for a key whose refill failed.

    Args:
        reference: Run timestamp supplied by the scheduler
        repository: Key store
        audit_sink: Destination for audit events
        clock: Source of the last_refill_at timestamp
        actor_id: System actor recorded on audit events
        location: Origin tag recorded on audit events

    Returns:
        RefillRunResult with refilled key ids and per-key failures

    Raises:
        StoreQueryError: If due keys cannot be listed. No key is touched.
    """
    classification = classify_day(reference)
    keys = select_due_keys(repository, classification)

    result = RefillRunResult(classification=classification, selected_count=len(keys))

    for key in keys:
        try:
            refill_key(repository, key, clock())
        except UpdateError as e:
            log.error(f"refill for {key.id} failed: {e}")
            result.refill_failures.append(KeyFailure(key.id, e.operation, e.reason))
            continue

        result.refilled_key_ids.append(key.id)

        try:
            emit_refill_audit(
                audit_sink,
                key,
                key.refill_amount,
                actor_id=actor_id,
                location=location,
                now=clock()
            )
        except AuditIngestError as e:
            log.error(f"audit log for refilled key {key.id} was not written: {e}")
            result.audit_failures.append(KeyFailure(key.id, e.operation, e.reason))

    log.info(
        f"refill run complete: {len(result.refilled_key_ids)}/{len(keys)} keys refilled, "
        f"{len(result.refill_failures)} refill failures, "
        f"{len(result.audit_failures)} audit failures"
    )
    return result
