"""
Per-key refill.

Resets one key's remaining quota to its refill amount.
"""

from datetime import datetime

from quota_refill.errors import UpdateError
from quota_refill.logger import get_logger
from quota_refill.storage.models import Key
from quota_refill.storage.repository import KeyRepository

log = get_logger("quota_refill.refill")


def refill_key(repository: KeyRepository, key: Key, refilled_at: datetime) -> None:
    """Set remaining to the key's refill amount and stamp last_refill_at.

    The write is by id only. Concurrent writers are not detected; the last
    write wins.

    Args:
        repository: Key store to write to
        key: Due key to refill
        refilled_at: Timestamp recorded as last_refill_at

    Raises:
        UpdateError: If the key has no refill amount or the write fails
    """
    if key.refill_amount is None:
        raise UpdateError("key has no refill amount", "refill", key.id)

    try:
        repository.refill_key(key.id, key.refill_amount, refilled_at)
    except UpdateError:
        raise
    except Exception as e:
        raise UpdateError(str(e), "refill", key.id) from e

    log.debug(f"refilled {key.id} from {key.remaining} to {key.refill_amount}")
