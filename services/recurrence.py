"""
services/recurrence.py
----------------------
Calendar arithmetic for recurring obligations.
This is the single rule for "when is it due next"; everything else
(catch-up, completion, skipping) goes through compute_next_occurrence.

Pure and synchronous: no I/O, no clock reads.
"""

from datetime import date, timedelta
from typing import Iterator

from dateutil.relativedelta import relativedelta

from models.recurring import (
    CustomDayOfMonth,
    Daily,
    FrequencySpec,
    Monthly,
    Weekly,
    Yearly,
)
from utils.errors import RunawayRecurrence, ValidationError

DEFAULT_MAX_ITERATIONS = 1000


def compute_next_occurrence(previous_due: date, freq: FrequencySpec) -> date:
    """
    Advance a due date by exactly one period.

    relativedelta clamps to the end of the target month, so
    Jan 31 + 1 month is Feb 28/29 and Feb 29 + 1 year is Feb 28.

    Args:
        previous_due: The occurrence being resolved.
        freq: The obligation's frequency.

    Returns:
        The following occurrence, always strictly after previous_due.

    Raises:
        ValidationError: If freq is not a known FrequencySpec.
    """
    match freq:
        case Daily():
            return previous_due + timedelta(days=1)
        case Weekly():
            return previous_due + timedelta(weeks=1)
        case Monthly():
            return previous_due + relativedelta(months=1)
        case Yearly():
            return previous_due + relativedelta(years=1)
        case CustomDayOfMonth(day=day):
            return previous_due + relativedelta(months=1, day=day)
    raise ValidationError(f"Unsupported frequency: {freq!r}")


def catch_up_to_today(
    anchor: date,
    freq: FrequencySpec,
    today: date,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> date:
    """
    Advance a stale anchor to the first occurrence on or after today.

    An anchor that is already today or later is returned unchanged, so
    calling this twice gives the same result as calling it once.

    Raises:
        RunawayRecurrence: If more than max_iterations steps are needed.
    """
    if anchor >= today:
        return anchor

    current = anchor
    for _ in range(max_iterations):
        current = compute_next_occurrence(current, freq)
        if current >= today:
            return current
    raise RunawayRecurrence(anchor, max_iterations)


def occurrences_between(
    anchor: date,
    freq: FrequencySpec,
    start: date,
    end: date,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Iterator[date]:
    """
    Yield every occurrence from anchor onwards that falls in [start, end].

    Raises:
        RunawayRecurrence: If the window needs more than max_iterations steps.
    """
    current = anchor
    for _ in range(max_iterations):
        if current > end:
            return
        if current >= start:
            yield current
        current = compute_next_occurrence(current, freq)
    raise RunawayRecurrence(anchor, max_iterations)
