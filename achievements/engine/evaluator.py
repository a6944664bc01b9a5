"""Achievement evaluation entry point.

One call = one full recomputation: capture "now" once, fetch the user's
whole completed history, resolve the per-task lookups once, run every rule
in the catalogue. No state survives between calls, so evaluating the same
history twice gives the same answer.

Collaborator failures (the history source raising) propagate to the caller;
there is no partial-result mode.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from achievements.config.settings import CALENDAR_TIMEZONE
from achievements.engine.rules import CATALOGUE, Achievement, AuxiliaryLookups
from achievements.models.snapshot import TaskSnapshot

logger = logging.getLogger(__name__)

RuleResult = dict[str, bool]


class TaskHistorySource(Protocol):
    """Read interface over the task service's records."""

    def fetch_completed_snapshots(self, user_id: str, project_id: str, team_id: str) -> list[TaskSnapshot]:
        ...

    def has_associated_comment(self, task_id: str) -> bool:
        ...

    def was_ever_cancelled(self, task_id: str) -> bool:
        ...


def calendar_clock(zone: str = CALENDAR_TIMEZONE) -> Callable[[], datetime]:
    """Clock reading "now" in the zone calendar buckets are taken in."""
    tz = ZoneInfo(zone)
    return lambda: datetime.now(tz)


def resolve_lookups(snapshots: Sequence[TaskSnapshot], source: TaskHistorySource) -> AuxiliaryLookups:
    """Ask the source about every task once and answer rules from memory."""
    comments = {s.task_id: source.has_associated_comment(s.task_id) for s in snapshots}
    cancelled = {s.task_id: source.was_ever_cancelled(s.task_id) for s in snapshots}
    return AuxiliaryLookups(
        has_comment=lambda task_id: comments.get(task_id, False),
        was_cancelled=lambda task_id: cancelled.get(task_id, False),
    )


def evaluate_snapshots(
    snapshots: Sequence[TaskSnapshot],
    now: datetime,
    lookups: AuxiliaryLookups,
    catalogue: Sequence[Achievement] = CATALOGUE,
) -> RuleResult:
    """Run every rule against the same history and instant.

    Rules are independent; each one is evaluated regardless of the others.
    """
    frozen = tuple(snapshots)
    results: RuleResult = {}
    for achievement in catalogue:
        holds = bool(achievement.rule(frozen, now, lookups))
        logger.debug("Rule %s -> %s", achievement.achievement_id, holds)
        results[achievement.achievement_id] = holds
    return results


class AchievementEvaluator:
    """Decides which achievements hold for a user in a project/team."""

    def __init__(
        self,
        source: TaskHistorySource,
        clock: Optional[Callable[[], datetime]] = None,
        catalogue: Sequence[Achievement] = CATALOGUE,
    ):
        self.source = source
        self.clock = clock or calendar_clock()
        self.catalogue = tuple(catalogue)

    def evaluate_at(self, user_id: str, project_id: str, team_id: str, now: datetime) -> RuleResult:
        """Evaluate against an explicit instant."""
        snapshots = self.source.fetch_completed_snapshots(user_id, project_id, team_id)
        lookups = resolve_lookups(snapshots, self.source)
        results = evaluate_snapshots(snapshots, now, lookups, self.catalogue)
        logger.info(
            "Evaluated %d achievements for user %s (project %s, team %s) over %d tasks: %d hold",
            len(results), user_id, project_id, team_id, len(snapshots), sum(results.values()),
        )
        return results

    def evaluate(self, user_id: str, project_id: str, team_id: str) -> RuleResult:
        return self.evaluate_at(user_id, project_id, team_id, self.clock())
