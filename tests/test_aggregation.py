"""Tests for achievements.engine.aggregation: calendar buckets, ratios, windows, streaks."""

import pytest
from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta

from achievements.engine.aggregation import (
    approved_at,
    created_at,
    group_by_calendar_day,
    group_by_calendar_month,
    is_within,
    longest_consecutive_month_streak,
    month_key,
    ratio,
    trailing_month_keys,
)


# ═══════════════════════════════════════════════════════════════════════════
# Ratio
# ═══════════════════════════════════════════════════════════════════════════


class TestRatio:
    @pytest.mark.parametrize("numerator", [0, 1, 17, 1000])
    def test_zero_denominator_is_zero(self, numerator):
        assert ratio(numerator, 0) == 0.0

    def test_exact_percentage(self):
        assert ratio(90, 100) == 90.0
        assert ratio(1, 3) == pytest.approx(33.333, rel=1e-3)

    def test_monotonic_in_numerator(self):
        values = [ratio(n, 50) for n in range(51)]
        assert values == sorted(values)
        assert values[-1] == 100.0


# ═══════════════════════════════════════════════════════════════════════════
# Calendar Grouping
# ═══════════════════════════════════════════════════════════════════════════


class TestCalendarGrouping:
    def test_midnight_boundary_splits_days(self, make_snapshot):
        before = datetime(2026, 10, 9, 23, 59, 59, 900000, tzinfo=timezone.utc)
        after = datetime(2026, 10, 10, 0, 0, 0, 100000, tzinfo=timezone.utc)
        counts = group_by_calendar_day(
            [make_snapshot(approved_at=before), make_snapshot(approved_at=after)], approved_at
        )
        assert counts == {before.date(): 1, after.date(): 1}

    def test_same_day_merges(self, make_snapshot):
        day = datetime(2026, 10, 10, tzinfo=timezone.utc)
        snapshots = [make_snapshot(approved_at=day + timedelta(hours=h)) for h in (0, 6, 23)]
        assert group_by_calendar_day(snapshots, approved_at) == {day.date(): 3}

    def test_month_boundary_splits_months(self, make_snapshot):
        before = datetime(2026, 9, 30, 23, 59, 59, 999999, tzinfo=timezone.utc)
        after = datetime(2026, 10, 1, tzinfo=timezone.utc)
        counts = group_by_calendar_month(
            [make_snapshot(approved_at=before), make_snapshot(approved_at=after)], approved_at
        )
        assert counts == {(2026, 9): 1, (2026, 10): 1}

    def test_missing_timestamp_is_left_out(self, make_snapshot, now):
        snapshots = [make_snapshot(approved_at=None, created_at=now), make_snapshot()]
        assert sum(group_by_calendar_day(snapshots, approved_at).values()) == 1
        assert sum(group_by_calendar_month(snapshots, created_at).values()) == 2

    def test_empty_input(self):
        assert group_by_calendar_day([], approved_at) == {}
        assert group_by_calendar_month([], approved_at) == {}


# ═══════════════════════════════════════════════════════════════════════════
# Trailing Windows
# ═══════════════════════════════════════════════════════════════════════════


class TestIsWithin:
    def test_lower_bound_is_inclusive(self, now):
        assert is_within(now - timedelta(days=30), now, timedelta(days=30))

    def test_just_outside_lower_bound(self, now):
        assert not is_within(now - timedelta(days=30, microseconds=1), now, timedelta(days=30))

    def test_future_instant_counts(self, now):
        assert is_within(now + timedelta(hours=1), now, timedelta(days=30))

    def test_calendar_duration(self, now):
        assert is_within(datetime(2025, 10, 15, 12, tzinfo=timezone.utc), now, relativedelta(months=12))
        assert not is_within(datetime(2025, 10, 15, 11, 59, tzinfo=timezone.utc), now, relativedelta(months=12))


class TestTrailingMonthKeys:
    def test_starts_at_current_month(self, now):
        assert trailing_month_keys(now, 3) == [(2026, 10), (2026, 9), (2026, 8)]

    def test_skip_current_month(self, now):
        assert trailing_month_keys(now, 2, skip=1) == [(2026, 9), (2026, 8)]

    def test_crosses_year(self):
        jan = datetime(2026, 1, 31, tzinfo=timezone.utc)
        assert trailing_month_keys(jan, 3) == [(2026, 1), (2025, 12), (2025, 11)]

    def test_month_key(self, now):
        assert month_key(now) == (2026, 10)
        assert month_key(now.date()) == (2026, 10)


# ═══════════════════════════════════════════════════════════════════════════
# Consecutive Month Streak
# ═══════════════════════════════════════════════════════════════════════════


class TestMonthStreak:
    def test_empty_is_zero(self):
        assert longest_consecutive_month_streak([]) == 0

    def test_single_month(self):
        assert longest_consecutive_month_streak([(2026, 3)]) == 1

    def test_run_across_year_end(self):
        months = [(2025, 11), (2025, 12), (2026, 1), (2026, 2)]
        assert longest_consecutive_month_streak(months) == 4

    def test_gap_breaks_streak(self):
        months = [(2026, 1), (2026, 2), (2026, 4), (2026, 5), (2026, 6)]
        assert longest_consecutive_month_streak(months) == 3

    def test_duplicates_and_order_ignored(self):
        months = [(2026, 5), (2026, 3), (2026, 4), (2026, 4)]
        assert longest_consecutive_month_streak(months) == 3
