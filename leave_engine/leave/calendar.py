"""Working-day arithmetic and date classification.

Pure functions only: no clock reads, no database access. Callers pass
``today`` and the holiday set explicitly so results are reproducible.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import AbstractSet, Iterator, Optional

from leave_engine.common.constants import WEEKEND, DateClass, LeaveDuration

_ONE_DAY = timedelta(days=1)


def _dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += _ONE_DAY


def is_working_day(
    day: date,
    rest_days: AbstractSet[int] = WEEKEND,
    holidays: Optional[AbstractSet[date]] = None,
) -> bool:
    """True when *day* is neither a weekly rest day nor a holiday."""
    if day.weekday() in rest_days:
        return False
    return not (holidays and day in holidays)


def working_days(
    start: date,
    end: date,
    rest_days: AbstractSet[int] = WEEKEND,
    holidays: Optional[AbstractSet[date]] = None,
) -> int:
    """Count working days in the inclusive range ``[start, end]``.

    Returns 0 when ``end < start``.
    """
    if end < start:
        return 0
    return sum(1 for d in _dates(start, end) if is_working_day(d, rest_days, holidays))


def requested_days(
    start: date,
    end: date,
    duration: LeaveDuration = LeaveDuration.full_day,
    rest_days: AbstractSet[int] = WEEKEND,
    holidays: Optional[AbstractSet[date]] = None,
) -> Decimal:
    """Working days scaled by the duration multiplier (half day = 0.5)."""
    return Decimal(working_days(start, end, rest_days, holidays)) * duration.multiplier


def calendar_span(start: date, end: date) -> int:
    """Inclusive calendar-day length of the range; 0 when ``end < start``."""
    if end < start:
        return 0
    return (end - start).days + 1


def classify(day: date, today: date) -> DateClass:
    if day < today:
        return DateClass.past
    if day == today:
        return DateClass.same_day
    return DateClass.future


def next_working_day(
    day: date,
    rest_days: AbstractSet[int] = WEEKEND,
    holidays: Optional[AbstractSet[date]] = None,
) -> date:
    """First working day strictly after *day*."""
    if len(rest_days) >= 7:
        raise ValueError("At least one weekday must be a working day")
    current = day + _ONE_DAY
    while not is_working_day(current, rest_days, holidays):
        current += _ONE_DAY
    return current


def previous_working_day(
    day: date,
    rest_days: AbstractSet[int] = WEEKEND,
    holidays: Optional[AbstractSet[date]] = None,
) -> date:
    """Last working day strictly before *day*."""
    if len(rest_days) >= 7:
        raise ValueError("At least one weekday must be a working day")
    current = day - _ONE_DAY
    while not is_working_day(current, rest_days, holidays):
        current -= _ONE_DAY
    return current


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive-range intersection test."""
    return a_start <= b_end and b_start <= a_end
