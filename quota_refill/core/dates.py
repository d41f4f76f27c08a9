"""
Calendar classification for refill runs.

Decides whether a run date is a normal day or the last day of its month.
Keys whose refill day does not exist in a short month (for example 31 in
February) are refilled on that month's last real day.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Union


@dataclass(frozen=True)
class DayClassification:
    """Day-of-month facts for one run date."""
    today: int
    last_day_of_month: int

    @property
    def is_end_of_month(self) -> bool:
        return self.today == self.last_day_of_month


def last_day_of_month(year: int, month: int) -> int:
    """Number of days in the given month, leap years included."""
    return calendar.monthrange(year, month)[1]


def classify_day(reference: Union[datetime, date]) -> DayClassification:
    """Classify a run date.

    Timezone-aware datetimes are converted to UTC first; naive datetimes
    and plain dates are used as given. Time of day never matters.

    Args:
        reference: Run timestamp supplied by the scheduler

    Returns:
        DayClassification for the reference date
    """
    if isinstance(reference, datetime) and reference.tzinfo is not None:
        reference = reference.astimezone(timezone.utc)

    return DayClassification(
        today=reference.day,
        last_day_of_month=last_day_of_month(reference.year, reference.month)
    )
