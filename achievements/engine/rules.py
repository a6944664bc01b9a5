"""Achievement rules - pure predicates over a user's completed-task history.

Every rule has the same shape:

    rule(snapshots, now, lookups) -> bool

``snapshots`` is the full completed history (treated as a set), ``now`` the
single evaluation instant and ``lookups`` the per-task comment/cancellation
answers resolved by the evaluator. Rules never raise for a well-formed list:
an item missing a field a rule needs is simply not eligible for that rule,
and an undefined statistic (empty population, one-item baseline) is False.

Thresholds are fixed constants of the achievement design.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence

from dateutil.relativedelta import relativedelta

from achievements.engine.aggregation import (
    approved_at,
    completion_duration,
    count_where,
    created_at,
    group_by_calendar_day,
    group_by_calendar_month,
    is_within,
    longest_consecutive_month_streak,
    ratio,
    trailing_month_keys,
)
from achievements.models.snapshot import Priority, TaskSnapshot

# ── Thresholds ───────────────────────────────────────────────────────────

MILESTONES = {
    "first_milestone": 10,
    "second_milestone": 100,
    "third_milestone": 500,
    "master_of_tasks": 1000,
    "legendary_contributor": 2000,
}

RECENT_WINDOW = timedelta(days=30)
RECENT_THRESHOLD = 30
BEFORE_DEADLINE_THRESHOLD = 20
HIGH_PRIORITY_THRESHOLD = 20
CRITICAL_PRIORITY_THRESHOLD = 40
DAILY_BURST_THRESHOLD = 5
REJECTION_RECOVERY_THRESHOLD = 10

MONTHLY_CRITICAL_THRESHOLD = 20
FIXED_BUGS_THRESHOLD = 100
REPORTED_BUGS_THRESHOLD = 25
REVIEW_COMMENTS_THRESHOLD = 30

FAST_APPROVAL_FACTOR = 0.9          # at least 10% faster than the mean
FAST_APPROVAL_THRESHOLD = 20
FAST_APPROVAL_MIN_SAMPLE = 2
ON_TIME_RATE_PERCENT = 90
CRITICAL_TURNAROUND = timedelta(hours=24)
LAST_MINUTE_MARGIN = timedelta(minutes=5)

TEAM_DIVERSITY_THRESHOLD = 5
CONTINUITY_MONTHS = 6
LONG_TASK_DURATION = timedelta(days=7)
LONG_TASK_THRESHOLD = 50
CONSISTENCY_MONTHS = 12
CONSISTENCY_PERCENT = 90


@dataclass(frozen=True)
class AuxiliaryLookups:
    """Per-task facts that live outside the snapshot."""
    has_comment: Callable[[str], bool]
    was_cancelled: Callable[[str], bool]


NO_LOOKUPS = AuxiliaryLookups(has_comment=lambda _id: False, was_cancelled=lambda _id: False)

Snapshots = Sequence[TaskSnapshot]


def _approved(snapshots: Snapshots) -> list[TaskSnapshot]:
    return [s for s in snapshots if s.approved_at is not None]


def _with_priority(snapshots: Snapshots, priority: Priority) -> list[TaskSnapshot]:
    return [s for s in _approved(snapshots) if s.priority == priority]


def _durations(snapshots: Snapshots) -> list[timedelta]:
    # Negative durations mean corrupt timestamps
    durations = (completion_duration(s) for s in snapshots)
    return [d for d in durations if d is not None and d >= timedelta(0)]


def _with_deadline(snapshots: Snapshots) -> list[TaskSnapshot]:
    return [s for s in _approved(snapshots) if s.expiration_date is not None]


# ═══════════════════════════════════════════════════════════════════════════
# Milestones
# ═══════════════════════════════════════════════════════════════════════════

def _milestone(threshold: int) -> Callable[[Snapshots, datetime, AuxiliaryLookups], bool]:
    def rule(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
        return len(_approved(snapshots)) >= threshold
    rule.__name__ = f"approved_at_least_{threshold}"
    return rule


# ═══════════════════════════════════════════════════════════════════════════
# Task-based
# ═══════════════════════════════════════════════════════════════════════════

def consistent_closer(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """30+ approvals in the 30 days up to now (window start inclusive)."""
    recent = count_where(_approved(snapshots), lambda s: is_within(s.approved_at, now, RECENT_WINDOW))
    return recent >= RECENT_THRESHOLD


def deadline_crusher(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """20+ tasks approved strictly before their due instant."""
    early = count_where(_with_deadline(snapshots), lambda s: s.approved_at < s.expiration_date)
    return early >= BEFORE_DEADLINE_THRESHOLD


def critical_thinker(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    return len(_with_priority(snapshots, Priority.HIGH)) >= HIGH_PRIORITY_THRESHOLD


def stability_savior(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    return len(_with_priority(snapshots, Priority.CRITICAL)) >= CRITICAL_PRIORITY_THRESHOLD


def task_warrior(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """Some single calendar day with 5+ approvals."""
    per_day = group_by_calendar_day(snapshots, approved_at)
    return max(per_day.values(), default=0) >= DAILY_BURST_THRESHOLD


def rejection_survivor(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """10+ approved tasks that were cancelled or rejected along the way."""
    recovered = count_where(_approved(snapshots), lambda s: lookups.was_cancelled(s.task_id))
    return recovered >= REJECTION_RECOVERY_THRESHOLD


# ═══════════════════════════════════════════════════════════════════════════
# Bug fixing & issue resolution
#
# A comment on a task is the signal that review/bug-fix work happened.
# ═══════════════════════════════════════════════════════════════════════════

def bug_slayer(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """Some single calendar month with 20+ CRITICAL approvals."""
    per_month = group_by_calendar_month(_with_priority(snapshots, Priority.CRITICAL), approved_at)
    return max(per_month.values(), default=0) >= MONTHLY_CRITICAL_THRESHOLD


def code_doctor(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    commented = count_where(_approved(snapshots), lambda s: lookups.has_comment(s.task_id))
    return commented >= FIXED_BUGS_THRESHOLD


def bug_bounty_hunter(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    critical = _with_priority(snapshots, Priority.CRITICAL)
    return count_where(critical, lambda s: lookups.has_comment(s.task_id)) >= REPORTED_BUGS_THRESHOLD


def quality_champion(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    commented = count_where(_approved(snapshots), lambda s: lookups.has_comment(s.task_id))
    return commented >= REVIEW_COMMENTS_THRESHOLD


# ═══════════════════════════════════════════════════════════════════════════
# Time management
# ═══════════════════════════════════════════════════════════════════════════

def time_wizard(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """20+ tasks approved at least 10% faster than the user's mean turnaround.

    A baseline needs at least two tasks.
    """
    durations = _durations(snapshots)
    if len(durations) < FAST_APPROVAL_MIN_SAMPLE:
        return False
    baseline = sum(durations, timedelta(0)) / len(durations)
    cutoff = baseline * FAST_APPROVAL_FACTOR
    return sum(1 for d in durations if d <= cutoff) >= FAST_APPROVAL_THRESHOLD


def on_time_achiever(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """90%+ of tasks with a due instant approved at or before it.

    Tasks without a due instant are outside both sides of the ratio.
    """
    eligible = _with_deadline(snapshots)
    on_time = count_where(eligible, lambda s: s.approved_at <= s.expiration_date)
    return ratio(on_time, len(eligible)) >= ON_TIME_RATE_PERCENT


def deadline_hero(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """A CRITICAL task approved within 24 hours of being opened."""
    return any(d <= CRITICAL_TURNAROUND for d in _durations(_with_priority(snapshots, Priority.CRITICAL)))


def last_minute_savior(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """A task approved in the last five minutes before its deadline, not after."""
    for s in _with_deadline(snapshots):
        margin = s.expiration_date - s.approved_at
        if timedelta(0) <= margin <= LAST_MINUTE_MARGIN:
            return True
    return False


# ═══════════════════════════════════════════════════════════════════════════
# Teamwork & history
# ═══════════════════════════════════════════════════════════════════════════

def team_player(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    teams = {s.team_id for s in _approved(snapshots) if s.team_id not in (None, "")}
    return len(teams) >= TEAM_DIVERSITY_THRESHOLD


def long_term_strategist(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """An approval in each of the last 6 calendar months, current month included."""
    window = set(trailing_month_keys(now, CONTINUITY_MONTHS))
    active = set(group_by_calendar_month(snapshots, approved_at)) & window
    return longest_consecutive_month_streak(active) >= CONTINUITY_MONTHS


def marathon_worker(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """50+ tasks that took strictly longer than 7 days."""
    return sum(1 for d in _durations(snapshots) if d > LONG_TASK_DURATION) >= LONG_TASK_THRESHOLD


def task_champion(snapshots: Snapshots, now: datetime, lookups: AuxiliaryLookups) -> bool:
    """Sustained completion over the last year.

    90%+ of all tasks were opened in the trailing 12 months, and each of the
    12 full calendar months before the current one saw at least one task
    opened.
    """
    opened = [s for s in _approved(snapshots) if s.created_at is not None]
    recent = count_where(opened, lambda s: is_within(s.created_at, now, relativedelta(months=CONSISTENCY_MONTHS)))
    if ratio(recent, len(opened)) < CONSISTENCY_PERCENT:
        return False
    per_month = group_by_calendar_month(opened, created_at)
    return all(per_month[key] > 0 for key in trailing_month_keys(now, CONSISTENCY_MONTHS, skip=1))


# ═══════════════════════════════════════════════════════════════════════════
# Catalogue
# ═══════════════════════════════════════════════════════════════════════════

Rule = Callable[[Snapshots, datetime, AuxiliaryLookups], bool]


@dataclass(frozen=True)
class Achievement:
    achievement_id: str
    title: str
    category: str
    rule: Rule


CATALOGUE: tuple[Achievement, ...] = (
    Achievement("first_milestone", "First Milestone", "milestone", _milestone(MILESTONES["first_milestone"])),
    Achievement("second_milestone", "Second Milestone", "milestone", _milestone(MILESTONES["second_milestone"])),
    Achievement("third_milestone", "Third Milestone", "milestone", _milestone(MILESTONES["third_milestone"])),
    Achievement("master_of_tasks", "Master of Tasks", "milestone", _milestone(MILESTONES["master_of_tasks"])),
    Achievement("legendary_contributor", "Legendary Contributor", "milestone",
                _milestone(MILESTONES["legendary_contributor"])),

    Achievement("consistent_closer", "Consistent Closer", "task", consistent_closer),
    Achievement("deadline_crusher", "Deadline Crusher", "task", deadline_crusher),
    Achievement("critical_thinker", "Critical Thinker", "task", critical_thinker),
    Achievement("stability_savior", "Stability Savior", "task", stability_savior),
    Achievement("task_warrior", "Task Warrior", "task", task_warrior),
    Achievement("rejection_survivor", "Rejection Survivor", "task", rejection_survivor),

    Achievement("bug_slayer", "Bug Slayer", "bug_fixing", bug_slayer),
    Achievement("code_doctor", "Code Doctor", "bug_fixing", code_doctor),
    Achievement("bug_bounty_hunter", "Bug Bounty Hunter", "bug_fixing", bug_bounty_hunter),
    Achievement("quality_champion", "Quality Champion", "bug_fixing", quality_champion),

    Achievement("time_wizard", "Time Wizard", "time_management", time_wizard),
    Achievement("on_time_achiever", "On-Time Achiever", "time_management", on_time_achiever),
    Achievement("deadline_hero", "Deadline Hero", "time_management", deadline_hero),
    Achievement("last_minute_savior", "Last-Minute Savior", "time_management", last_minute_savior),

    Achievement("team_player", "Team Player", "teamwork", team_player),
    Achievement("long_term_strategist", "Long-Term Strategist", "history", long_term_strategist),
    Achievement("marathon_worker", "Marathon Worker", "history", marathon_worker),
    Achievement("task_champion", "Task Champion", "history", task_champion),
)

ACHIEVEMENTS_BY_ID = {a.achievement_id: a for a in CATALOGUE}
