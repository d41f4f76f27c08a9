"""
Due-key selection.

Asks the key store which keys must be refilled on a classified day.
"""

from typing import List

from .dates import DayClassification
from quota_refill.errors import StoreQueryError
from quota_refill.logger import get_logger
from quota_refill.storage.models import Key
from quota_refill.storage.repository import KeyRepository

log = get_logger("quota_refill.selection")


def select_due_keys(
    repository: KeyRepository,
    classification: DayClassification
) -> List[Key]:
    """Return the keys due for refill.

    A selection failure means the due set is unknown, so it is never
    treated as "no keys due".

    Args:
        repository: Key store to query
        classification: Day classification of the run date

    Returns:
        Due keys in store order

    Raises:
        StoreQueryError: If the store cannot be queried
    """
    try:
        keys = repository.find_due_keys(classification)
    except StoreQueryError as e:
        log.error(f"Query on keys failed: {e}")
        raise
    except Exception as e:
        log.error(f"Query on keys failed: {e}")
        raise StoreQueryError(str(e), "list due keys") from e

    if classification.is_end_of_month:
        log.info(
            f"found {len(keys)} keys with refill set for today "
            f"(end of month, day {classification.today})"
        )
    else:
        log.info(f"found {len(keys)} keys with refill set for today (day {classification.today})")
    return keys
