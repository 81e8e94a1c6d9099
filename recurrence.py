from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Protocol
from zoneinfo import ZoneInfo

from config import get_settings
from models import Frequency


DAY_STEPS = {
    Frequency.daily: 1,
    Frequency.weekly: 7,
    Frequency.biweekly: 14,
}

MONTH_STEPS = {
    Frequency.monthly: 1,
    Frequency.quarterly: 3,
    Frequency.yearly: 12,
}


class RecurrenceDefinition(Protocol):
    start_date: date
    is_recurring: bool
    frequency: Optional[Frequency]
    recurrence_count: Optional[int]
    end_date: Optional[date]


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift ``base`` by whole calendar months, clipping to the target month.

    ``desired_day`` defaults to the base day; passing the series anchor day keeps
    a Jan 31 series on the 31st in months that have one.
    """
    desired_day = desired_day or base.day
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    dim = days_in_month(year, month)
    return date(year, month, min(desired_day, dim))


def nth_occurrence(start: date, frequency: Frequency, n: int) -> date:
    """Date of the zero-based ``n``-th occurrence counted from ``start``."""
    if frequency in DAY_STEPS:
        return start + timedelta(days=DAY_STEPS[frequency] * n)
    return add_months(start, MONTH_STEPS[frequency] * n, desired_day=start.day)


def _first_candidate_index(
    start: date, frequency: Frequency, window_start: date
) -> int:
    # Largest index whose occurrence cannot land inside the window yet.
    if window_start <= start:
        return 0
    if frequency in DAY_STEPS:
        return (window_start - start).days // DAY_STEPS[frequency]
    months_between = (window_start.year - start.year) * 12 + (
        window_start.month - start.month
    )
    return max(0, months_between // MONTH_STEPS[frequency])


def expand(
    definition: RecurrenceDefinition, window_start: date, window_end: date
) -> Iterator[date]:
    """Yield occurrence dates of ``definition`` in ``[window_start, window_end)``.

    A fresh generator is returned on every call, so wide windows can be
    requested repeatedly without state carried between calls.
    """
    start = definition.start_date
    if window_start >= window_end or start >= window_end:
        return
    if not definition.is_recurring or definition.frequency is None:
        if window_start <= start:
            yield start
        return

    frequency = Frequency(definition.frequency)
    count = definition.recurrence_count
    end_date = definition.end_date
    n = _first_candidate_index(start, frequency, window_start)
    while True:
        if count is not None and n + 1 > count:
            return
        current = nth_occurrence(start, frequency, n)
        if current >= window_end:
            return
        if end_date is not None and current > end_date:
            return
        if current >= window_start:
            yield current
        n += 1


def occurrence_id(parent_id: int, occurrence_date: date) -> str:
    return f"{parent_id}:{occurrence_date.isoformat()}"


def parse_occurrence_id(value: str) -> tuple[int, date]:
    parent, _, day = value.partition(":")
    if not parent or not day:
        raise ValueError(f"Invalid occurrence id: {value}")
    return int(parent), date.fromisoformat(day)


def next_occurrence_after(
    definition: RecurrenceDefinition, after: date
) -> Optional[tuple[int, date]]:
    """Return ``(index, date)`` of the first occurrence strictly after ``after``.

    The index is one-based, matching ``recurrence_count``.
    """
    if not definition.is_recurring or definition.frequency is None:
        return None
    frequency = Frequency(definition.frequency)
    n = _first_candidate_index(definition.start_date, frequency, after)
    while True:
        count = definition.recurrence_count
        if count is not None and n + 1 > count:
            return None
        current = nth_occurrence(definition.start_date, frequency, n)
        if definition.end_date is not None and current > definition.end_date:
            return None
        if current > after:
            return n + 1, current
        n += 1
