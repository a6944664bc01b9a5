"""Shared test fixtures for the achievement engine test suite."""

import pytest
import fakeredis
from datetime import datetime, timedelta, timezone

from achievements.engine.rules import AuxiliaryLookups
from achievements.models.snapshot import TaskSnapshot, Priority


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeRedis(decode_responses=True)


# ── Time Freezing ───────────────────────────────────────────────────────

@pytest.fixture
def now():
    """Fixed evaluation instant for deterministic rule tests.

    Default: 2026-10-15T12:00:00Z (mid-month, so month windows are unambiguous).
    """
    return datetime(2026, 10, 15, 12, 0, 0, tzinfo=timezone.utc)


# ── Snapshot Factories ──────────────────────────────────────────────────

@pytest.fixture
def make_snapshot(now):
    """Factory fixture that creates TaskSnapshot instances with sensible defaults.

    Approved one day before ``now`` and opened two hours before approval
    unless overridden.

    Usage:
        s = make_snapshot(priority=Priority.CRITICAL, approved_at=now)
    """
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        approved = overrides.pop("approved_at", now - timedelta(days=1))
        created = overrides.pop("created_at", None)
        if created is None:
            created = (approved or now) - timedelta(hours=2)
        defaults = {
            "task_id": f"task-{_counter}",
            "created_at": created,
            "approved_at": approved,
            "priority": Priority.MEDIUM,
            "team_id": "team-1",
        }
        defaults.update(overrides)
        return TaskSnapshot(**defaults)

    return _factory


@pytest.fixture
def make_lookups():
    """Factory for AuxiliaryLookups answering from fixed sets of task ids."""
    def _factory(commented=(), cancelled=()):
        commented_ids, cancelled_ids = set(commented), set(cancelled)
        return AuxiliaryLookups(
            has_comment=lambda task_id: task_id in commented_ids,
            was_cancelled=lambda task_id: task_id in cancelled_ids,
        )

    return _factory


# ── In-memory history source ────────────────────────────────────────────

class FakeHistorySource:
    """In-memory TaskHistorySource that counts every call it receives."""

    def __init__(self, snapshots=(), commented=(), cancelled=(), failures=0):
        self.snapshots = list(snapshots)
        self.commented = set(commented)
        self.cancelled = set(cancelled)
        self.failures = failures       # first N fetches raise ConnectionError
        self.fetch_calls = 0
        self.comment_calls: dict[str, int] = {}
        self.cancel_calls: dict[str, int] = {}

    def fetch_completed_snapshots(self, user_id, project_id, team_id):
        self.fetch_calls += 1
        if self.fetch_calls <= self.failures:
            raise ConnectionError("task service unavailable")
        return list(self.snapshots)

    def has_associated_comment(self, task_id):
        self.comment_calls[task_id] = self.comment_calls.get(task_id, 0) + 1
        return task_id in self.commented

    def was_ever_cancelled(self, task_id):
        self.cancel_calls[task_id] = self.cancel_calls.get(task_id, 0) + 1
        return task_id in self.cancelled


@pytest.fixture
def fake_source():
    return FakeHistorySource
