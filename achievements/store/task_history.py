"""Redis-backed task history: the read interface the evaluator consumes.

Three lookups, matching what the task service records:
  completed snapshots  - completed:{user}:{project}:{team} set + task:{id} hashes
  comment existence    - task:{id}:comments counter
  cancellation history - task:{id}:history list of JSON status transitions

The write helpers exist for seeding and tests; the task service owns these
keys in production.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import redis

from achievements.config.settings import CALENDAR_TIMEZONE, REDIS_URL
from achievements.models.snapshot import (
    COMMENTS_SUFFIX,
    HISTORY_SUFFIX,
    TASK_PREFIX,
    TaskSnapshot,
    TaskStatus,
    completed_key,
)

logger = logging.getLogger(__name__)

# Statuses that count as "was cancelled/rejected before final approval"
CANCELLATION_STATUSES = frozenset({TaskStatus.CANCELLED, TaskStatus.REJECTED})


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _in_frame(instant: Optional[datetime], tz: ZoneInfo) -> Optional[datetime]:
    if instant is None:
        return None
    if instant.tzinfo is None:
        return instant.replace(tzinfo=tz)
    return instant.astimezone(tz)


def to_calendar_frame(snapshot: TaskSnapshot, tz: ZoneInfo) -> TaskSnapshot:
    """Express every timestamp of a snapshot in the calendar zone.

    Naive timestamps are taken to already be local wall-clock time and are
    tagged with the zone, so every instant compares against an aware "now".
    """
    return replace(
        snapshot,
        created_at=_in_frame(snapshot.created_at, tz),
        approved_at=_in_frame(snapshot.approved_at, tz),
        expiration_date=_in_frame(snapshot.expiration_date, tz),
    )


# ── Writes ───────────────────────────────────────────────────────────────

def store_snapshot(
    snapshot: TaskSnapshot,
    user_id: str,
    project_id: str,
    r: redis.Redis | None = None,
) -> None:
    """Record a completed task for its assignee."""
    if snapshot.approved_at is None:
        raise ValueError(f"Task {snapshot.task_id} has no approval time")
    r = r or _get_redis()
    snapshot.to_redis(r, user_id, project_id)


def add_comment(task_id: str, r: redis.Redis | None = None) -> int:
    """Register one more comment on a task. Returns the new count."""
    r = r or _get_redis()
    return r.incr(f"{TASK_PREFIX}{task_id}{COMMENTS_SUFFIX}")


def record_status_change(
    task_id: str,
    previous: str,
    new: str,
    r: redis.Redis | None = None,
    at: datetime | None = None,
) -> None:
    """Append a status transition to the task's history."""
    r = r or _get_redis()
    entry = {
        "previous": previous,
        "new": new,
        "at": (at or datetime.now(timezone.utc)).isoformat(),
    }
    r.rpush(f"{TASK_PREFIX}{task_id}{HISTORY_SUFFIX}", json.dumps(entry))


# ── Reads ────────────────────────────────────────────────────────────────

def fetch_completed_snapshots(
    user_id: str,
    project_id: str,
    team_id: str,
    r: redis.Redis | None = None,
    tz: ZoneInfo | None = None,
) -> list[TaskSnapshot]:
    """Every completed task assigned to the user in this project/team.

    Order is unspecified. Corrupt entries are logged and skipped; Redis
    errors propagate.
    """
    r = r or _get_redis()
    tz = tz or ZoneInfo(CALENDAR_TIMEZONE)
    snapshots = []
    for task_id in r.smembers(completed_key(user_id, project_id, team_id)):
        try:
            snapshot = TaskSnapshot.from_redis(r, task_id)
        except (KeyError, ValueError) as exc:
            logger.warning("Skipping corrupt snapshot %s: %s", task_id, exc)
            continue
        if snapshot is None or snapshot.approved_at is None:
            continue
        snapshots.append(to_calendar_frame(snapshot, tz))
    return snapshots


def has_associated_comment(task_id: str, r: redis.Redis | None = None) -> bool:
    """True if the task has at least one comment."""
    r = r or _get_redis()
    count = r.get(f"{TASK_PREFIX}{task_id}{COMMENTS_SUFFIX}")
    return bool(count) and int(count) > 0


def was_ever_cancelled(task_id: str, r: redis.Redis | None = None) -> bool:
    """True if the task passed through CANCELLED or REJECTED at any point."""
    r = r or _get_redis()
    for raw in r.lrange(f"{TASK_PREFIX}{task_id}{HISTORY_SUFFIX}", 0, -1):
        try:
            entry = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Skipping unreadable history entry for task %s", task_id)
            continue
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed history entry for task %s", task_id)
            continue
        if entry.get("new") in CANCELLATION_STATUSES:
            return True
    return False


class RedisTaskHistorySource:
    """TaskHistorySource over a single Redis connection."""

    def __init__(self, r: redis.Redis | None = None, calendar_timezone: str = CALENDAR_TIMEZONE):
        self._r = r or _get_redis()
        self._tz = ZoneInfo(calendar_timezone)

    def fetch_completed_snapshots(self, user_id: str, project_id: str, team_id: str) -> list[TaskSnapshot]:
        return fetch_completed_snapshots(user_id, project_id, team_id, self._r, self._tz)

    def has_associated_comment(self, task_id: str) -> bool:
        return has_associated_comment(task_id, self._r)

    def was_ever_cancelled(self, task_id: str) -> bool:
        return was_ever_cancelled(task_id, self._r)
