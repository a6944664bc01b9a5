"""Temporal aggregation helpers shared by the achievement rules.

Pure functions, no Redis. Every rule that buckets by day or month, takes a
percentage or checks a trailing window goes through here so the boundary
semantics live in one place:

  - day/month buckets are calendar buckets in the frame of the timestamp,
    midnight to midnight
  - trailing windows are inclusive at their lower bound and open above
  - percentages of an empty population are 0
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional

from dateutil.relativedelta import relativedelta

from achievements.models.snapshot import TaskSnapshot

MonthKey = tuple[int, int]
Selector = Callable[[TaskSnapshot], Optional[datetime]]


def approved_at(snapshot: TaskSnapshot) -> Optional[datetime]:
    return snapshot.approved_at


def created_at(snapshot: TaskSnapshot) -> Optional[datetime]:
    return snapshot.created_at


def month_key(instant: datetime | date) -> MonthKey:
    return instant.year, instant.month


def group_by_calendar_day(snapshots: Iterable[TaskSnapshot], selector: Selector) -> Counter[date]:
    """Count snapshots per calendar date of the selected timestamp.

    Snapshots whose selected timestamp is missing are left out.
    """
    counts: Counter[date] = Counter()
    for snapshot in snapshots:
        instant = selector(snapshot)
        if instant is not None:
            counts[instant.date()] += 1
    return counts


def group_by_calendar_month(snapshots: Iterable[TaskSnapshot], selector: Selector) -> Counter[MonthKey]:
    """Count snapshots per (year, month) of the selected timestamp."""
    counts: Counter[MonthKey] = Counter()
    for snapshot in snapshots:
        instant = selector(snapshot)
        if instant is not None:
            counts[month_key(instant)] += 1
    return counts


def ratio(numerator: float, denominator: float) -> float:
    """Percentage numerator/denominator, 0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return numerator * 100.0 / denominator


def is_within(instant: datetime, reference: datetime, duration: timedelta | relativedelta) -> bool:
    """True if instant is no earlier than reference - duration."""
    return reference - duration <= instant


def trailing_month_keys(now: datetime, count: int, skip: int = 0) -> list[MonthKey]:
    """Calendar months counting back from now's month.

    skip=0 starts at the current month, skip=1 at the month before it.
    """
    anchor = now.replace(day=1)
    return [month_key(anchor - relativedelta(months=skip + i)) for i in range(count)]


def _month_index(key: MonthKey) -> int:
    year, month = key
    return year * 12 + (month - 1)


def longest_consecutive_month_streak(months: Iterable[MonthKey]) -> int:
    """Length of the longest run of consecutive calendar months present."""
    indices = sorted({_month_index(key) for key in months})
    longest = 0
    run = 0
    previous = None
    for index in indices:
        run = run + 1 if previous is not None and index == previous + 1 else 1
        longest = max(longest, run)
        previous = index
    return longest


def completion_duration(snapshot: TaskSnapshot) -> Optional[timedelta]:
    return snapshot.duration


def count_where(snapshots: Iterable[TaskSnapshot], predicate: Callable[[TaskSnapshot], bool]) -> int:
    return sum(1 for snapshot in snapshots if predicate(snapshot))
