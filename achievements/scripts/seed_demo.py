"""Seed Redis with a demo completion history and queue one completion event.

Run: python -m achievements.scripts.seed_demo (from the repo root)
"""

from datetime import datetime, timedelta, timezone

import redis

from achievements.config.settings import COMPLETION_QUEUE_KEY, REDIS_URL
from achievements.models.messages import CompletionEvent
from achievements.models.snapshot import TASK_PREFIX, Priority, TaskSnapshot, TaskStatus, completed_key
from achievements.store.task_history import add_comment, record_status_change, store_snapshot

DEMO_USER = "user-1"
DEMO_PROJECT = "project-1"
DEMO_TEAM = "team-1"


def clear_demo(r: redis.Redis) -> None:
    """Remove the demo user's tasks and any queued events."""
    key = completed_key(DEMO_USER, DEMO_PROJECT, DEMO_TEAM)
    for task_id in r.smembers(key):
        for k in r.scan_iter(f"{TASK_PREFIX}{task_id}*"):
            r.delete(k)
    r.delete(key)
    r.delete(COMPLETION_QUEUE_KEY)


def build_history(now: datetime) -> list[TaskSnapshot]:
    """Fifteen days of work: one task a day, every third one HIGH, all on time."""
    snapshots = []
    for day in range(15):
        created = now - timedelta(days=day, hours=6)
        approved = created + timedelta(hours=4)
        snapshots.append(
            TaskSnapshot(
                task_id=f"demo-{day + 1}",
                created_at=created,
                approved_at=approved,
                expiration_date=created + timedelta(days=1),
                priority=Priority.HIGH if day % 3 == 0 else Priority.MEDIUM,
                team_id=DEMO_TEAM,
            )
        )
    return snapshots


def seed():
    r = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    clear_demo(r)

    now = datetime.now(timezone.utc)
    history = build_history(now)
    for snapshot in history:
        store_snapshot(snapshot, DEMO_USER, DEMO_PROJECT, r)
        record_status_change(snapshot.task_id, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, r, at=snapshot.created_at)
        record_status_change(snapshot.task_id, TaskStatus.IN_PROGRESS, TaskStatus.APPROVED, r, at=snapshot.approved_at)

    # A couple of tasks with review comments, one that bounced back once
    for snapshot in history[:4]:
        add_comment(snapshot.task_id, r)
    record_status_change(history[-1].task_id, TaskStatus.PENDING_REVIEW, TaskStatus.REJECTED, r)

    latest = history[0]
    event = CompletionEvent(
        task_id=latest.task_id,
        user_id=DEMO_USER,
        team_id=DEMO_TEAM,
        project_id=DEMO_PROJECT,
    )
    r.rpush(COMPLETION_QUEUE_KEY, event.model_dump_json())

    print(f"Seeded {len(history)} completed tasks for {DEMO_USER} ({DEMO_PROJECT}/{DEMO_TEAM})")
    for s in history:
        print(f"  [{s.task_id}] {s.priority.name:<8} approved {s.approved_at:%Y-%m-%d %H:%M}")
    print(f"\nQueued completion event for {latest.task_id} on {COMPLETION_QUEUE_KEY}")


if __name__ == "__main__":
    seed()
