"""Tests for achievements.engine.evaluator: clock capture, lookups, idempotence."""

import pytest
import redis
from datetime import timedelta, timezone
from unittest.mock import MagicMock

from achievements.engine.evaluator import (
    AchievementEvaluator,
    calendar_clock,
    resolve_lookups,
)
from achievements.engine.rules import CATALOGUE
from achievements.models.snapshot import Priority


@pytest.fixture
def history(make_snapshot, now):
    items = [make_snapshot(approved_at=now - timedelta(days=i % 20)) for i in range(40)]
    items += [make_snapshot(priority=Priority.CRITICAL) for _ in range(3)]
    return items


# ═══════════════════════════════════════════════════════════════════════════
# Evaluation
# ═══════════════════════════════════════════════════════════════════════════


class TestAchievementEvaluator:
    def test_results_follow_catalogue_order(self, fake_source, history, now):
        evaluator = AchievementEvaluator(fake_source(history), clock=lambda: now)
        results = evaluator.evaluate("user-1", "project-1", "team-1")
        assert list(results) == [a.achievement_id for a in CATALOGUE]
        assert results["first_milestone"] is True
        assert results["consistent_closer"] is True
        assert results["second_milestone"] is False

    def test_idempotent(self, fake_source, history, now):
        evaluator = AchievementEvaluator(fake_source(history), clock=lambda: now)
        first = evaluator.evaluate("user-1", "project-1", "team-1")
        second = evaluator.evaluate("user-1", "project-1", "team-1")
        assert first == second

    def test_clock_read_once_per_evaluation(self, fake_source, history, now):
        reads = []

        def clock():
            reads.append(now)
            return now

        AchievementEvaluator(fake_source(history), clock=clock).evaluate("user-1", "project-1", "team-1")
        assert len(reads) == 1

    def test_explicit_instant(self, fake_source, history, now):
        evaluator = AchievementEvaluator(fake_source(history))
        later = now + timedelta(days=365)
        assert evaluator.evaluate_at("user-1", "project-1", "team-1", now)["consistent_closer"] is True
        assert evaluator.evaluate_at("user-1", "project-1", "team-1", later)["consistent_closer"] is False

    def test_empty_history(self, fake_source, now):
        results = AchievementEvaluator(fake_source(), clock=lambda: now).evaluate("u", "p", "t")
        assert not any(results.values())

    def test_source_failure_propagates(self, fake_source, history, now):
        source = fake_source(history, failures=1)
        evaluator = AchievementEvaluator(source, clock=lambda: now)
        with pytest.raises(ConnectionError):
            evaluator.evaluate("user-1", "project-1", "team-1")
        assert source.comment_calls == {}

    def test_redis_error_propagates_unchanged(self, now):
        source = MagicMock()
        source.fetch_completed_snapshots.side_effect = redis.ConnectionError("refused")
        with pytest.raises(redis.ConnectionError, match="refused"):
            AchievementEvaluator(source, clock=lambda: now).evaluate("user-1", "project-1", "team-1")
        source.has_associated_comment.assert_not_called()

    def test_lookups_feed_rules(self, fake_source, make_snapshot, now):
        history = [make_snapshot() for _ in range(30)]
        source = fake_source(history, commented=[s.task_id for s in history])
        results = AchievementEvaluator(source, clock=lambda: now).evaluate("u", "p", "t")
        assert results["quality_champion"] is True
        assert results["code_doctor"] is False


# ═══════════════════════════════════════════════════════════════════════════
# Auxiliary Lookups
# ═══════════════════════════════════════════════════════════════════════════


class TestResolveLookups:
    def test_each_task_asked_once(self, fake_source, history, now):
        source = fake_source(history)
        AchievementEvaluator(source, clock=lambda: now).evaluate("user-1", "project-1", "team-1")
        assert set(source.comment_calls) == {s.task_id for s in history}
        assert set(source.comment_calls.values()) == {1}
        assert set(source.cancel_calls.values()) == {1}

    def test_answers_from_memory(self, fake_source, make_snapshot):
        a, b = make_snapshot(), make_snapshot()
        source = fake_source([a, b], commented=[a.task_id], cancelled=[b.task_id])
        lookups = resolve_lookups([a, b], source)
        assert lookups.has_comment(a.task_id) and not lookups.has_comment(b.task_id)
        assert lookups.was_cancelled(b.task_id) and not lookups.was_cancelled(a.task_id)
        assert not lookups.has_comment("unknown")
        assert source.comment_calls == {a.task_id: 1, b.task_id: 1}


class TestCalendarClock:
    def test_reads_aware_now(self):
        instant = calendar_clock("UTC")()
        assert instant.tzinfo is not None
        assert instant.utcoffset() == timezone.utc.utcoffset(None)
