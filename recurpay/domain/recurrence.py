"""Recurrence date engine.

Expands a rule's (frequency, interval, start_date, end_date) into concrete
dates inside a window. The k-th date is always computed from start_date, so
monthly clamping never drifts: 31 Jan steps to 29 Feb and then to 31 Mar.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from ..core.exceptions import RecurpayValidationError
from .models import Frequency, RecurrenceRule

DEFAULT_LOOKAHEAD_DAYS = 90

_DAYS_PER_UNIT = {Frequency.DAILY: 1, Frequency.WEEKLY: 7}


def _coerce_frequency(value: Any) -> Frequency:
    try:
        return Frequency(value)
    except ValueError:
        raise RecurpayValidationError(f"Unsupported frequency: {value!r}", field="frequency") from None


def _check_interval(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise RecurpayValidationError(f"interval must be an integer >= 1, got {value!r}", field="interval")
    return value


def date_for_index(start_date: date, frequency: Frequency, interval: int, index: int) -> date:
    """Return the index-th date of the schedule counted from start_date."""
    if frequency == Frequency.MONTHLY:
        # relativedelta clamps to the last valid day of the target month
        return start_date + relativedelta(months=index * interval)
    return start_date + timedelta(days=index * interval * _DAYS_PER_UNIT[frequency])


def _first_index(start_date: date, frequency: Frequency, interval: int, lower: date) -> int:
    """Smallest index whose date can fall on or after ``lower``."""
    if lower <= start_date:
        return 0
    if frequency == Frequency.MONTHLY:
        months = (lower.year - start_date.year) * 12 + (lower.month - start_date.month)
        return max(0, months // interval)
    step_days = interval * _DAYS_PER_UNIT[frequency]
    offset = (lower - start_date).days
    return -(-offset // step_days)


def generate_schedule(
    frequency: Any,
    interval: Any,
    start_date: date,
    end_date: Optional[date],
    window_from: date,
    window_to: date,
) -> list[date]:
    """Expand schedule parameters into dates inside [window_from, window_to].

    Raises:
        RecurpayValidationError: interval < 1 or unsupported frequency
    """
    freq = _coerce_frequency(frequency)
    step = _check_interval(interval)

    lower = max(start_date, window_from)
    upper = window_to if end_date is None else min(end_date, window_to)
    if lower > upper:
        return []

    dates: list[date] = []
    index = _first_index(start_date, freq, step, lower)
    while True:
        current = date_for_index(start_date, freq, step, index)
        if current > upper:
            break
        if current >= lower and (not dates or current > dates[-1]):
            dates.append(current)
        index += 1
    return dates


def generate_dates(rule: RecurrenceRule, window_from: date, window_to: date) -> list[date]:
    """Generate the ordered, deduplicated dates of ``rule`` inside a window.

    Args:
        rule: Recurrence rule providing frequency, interval and date bounds
        window_from: Inclusive lower bound
        window_to: Inclusive upper bound

    Returns:
        Strictly increasing list of dates; empty when the window and the
        rule's active range do not overlap.

    Raises:
        RecurpayValidationError: interval < 1 or unsupported frequency
    """
    return generate_schedule(
        rule.frequency,
        rule.interval,
        rule.start_date,
        rule.end_date,
        window_from,
        window_to,
    )


def default_window(
    today: date,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
    end_date: Optional[date] = None,
) -> tuple[date, date]:
    """Return ``(today, min(today + lookahead_days, end_date))``."""
    window_to = today + timedelta(days=lookahead_days)
    if end_date is not None and end_date < window_to:
        window_to = end_date
    return today, window_to
