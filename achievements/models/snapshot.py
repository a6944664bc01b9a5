"""Completed-task snapshot model for the achievement engine.

Redis-backed, read-only view of a work item once it has been approved.
Carries only the fields the achievement rules look at.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Optional

import redis

TASK_PREFIX = "task:"
COMPLETED_PREFIX = "completed:"
COMMENTS_SUFFIX = ":comments"
HISTORY_SUFFIX = ":history"


class Priority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


class TaskStatus:
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"


def completed_key(user_id: str, project_id: str, team_id: str) -> str:
    return f"{COMPLETED_PREFIX}{user_id}:{project_id}:{team_id}"


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class TaskSnapshot:
    task_id: str
    created_at: datetime
    approved_at: Optional[datetime] = None
    expiration_date: Optional[datetime] = None   # due instant
    priority: Priority = Priority.MEDIUM
    team_id: str = ""

    @property
    def duration(self) -> Optional[timedelta]:
        """Time from opening to approval, None when either end is missing."""
        if self.created_at is None or self.approved_at is None:
            return None
        return self.approved_at - self.created_at

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "created_at": self.created_at.isoformat(),
            "approved_at": self.approved_at.isoformat() if self.approved_at else "",
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else "",
            "priority": Priority(self.priority).name,
            "team_id": str(self.team_id),
        }

    @classmethod
    def from_dict(cls, data: dict) -> TaskSnapshot:
        """Build a snapshot from its stored form.

        Raises ValueError/KeyError on corrupt data; callers decide whether to
        skip the item.
        """
        priority = data.get("priority", Priority.MEDIUM.name)
        if isinstance(priority, str) and not priority.isdigit():
            priority = Priority[priority.upper()]
        return cls(
            task_id=str(data["task_id"]),
            created_at=_parse_instant(data["created_at"]),
            approved_at=_parse_instant(data.get("approved_at")),
            expiration_date=_parse_instant(data.get("expiration_date")),
            priority=Priority(int(priority)),
            team_id=str(data.get("team_id", "")),
        )

    def to_redis(self, r: redis.Redis, user_id: str, project_id: str) -> None:
        """Persist snapshot hash and index it under the assignee's completed set."""
        r.hset(f"{TASK_PREFIX}{self.task_id}", mapping=self.to_dict())
        r.sadd(completed_key(user_id, project_id, self.team_id), self.task_id)

    @classmethod
    def from_redis(cls, r: redis.Redis, task_id: str) -> Optional[TaskSnapshot]:
        """Load snapshot from Redis by ID."""
        data = r.hgetall(f"{TASK_PREFIX}{task_id}")
        if not data:
            return None
        decoded = {k.decode() if isinstance(k, bytes) else k:
                   v.decode() if isinstance(v, bytes) else v
                   for k, v in data.items()}
        return cls.from_dict(decoded)
