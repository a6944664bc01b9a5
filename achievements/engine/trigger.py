"""Completion-event trigger - feeds task completions into the evaluator.

Consumes raw ``CompletionEvent`` JSON from a queue, evaluates each one in a
worker thread and forwards the resulting ``AchievementDecision`` to the award
component. Owns everything the evaluator deliberately does not:

  - rejecting malformed events before they reach the evaluator
  - retry with linear backoff when the history source fails
  - bounding how many evaluations run at once
  - dead-lettering events that could not be processed

Evaluation is idempotent, so duplicate or out-of-order events are harmless.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, Optional

import redis
from pydantic import ValidationError

from achievements.config.settings import (
    ACHIEVEMENT_EVENTS_CHANNEL,
    COMPLETION_QUEUE_KEY,
    DEAD_LETTER_KEY,
    REDIS_URL,
    TRIGGER_MAX_ATTEMPTS,
    TRIGGER_MAX_WORKERS,
    TRIGGER_POLL_TIMEOUT,
    TRIGGER_RETRY_BACKOFF,
)
from achievements.engine.evaluator import AchievementEvaluator
from achievements.models.messages import AchievementDecision, CompletionEvent
from achievements.store.task_history import RedisTaskHistorySource

logger = logging.getLogger(__name__)

Publish = Callable[[AchievementDecision], None]
DeadLetter = Callable[[str], None]


class MalformedEventError(ValueError):
    """Raised when a raw completion event cannot be validated."""


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def parse_event(raw: str | bytes) -> CompletionEvent:
    try:
        return CompletionEvent.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid completion event: {exc.error_count()} error(s)") from exc


# ── Redis transport ──────────────────────────────────────────────────────

def redis_publisher(r: redis.Redis | None = None, channel: str = ACHIEVEMENT_EVENTS_CHANNEL) -> Publish:
    """Publish decisions on a pub/sub channel for the award component."""
    r = r or _get_redis()

    def publish(decision: AchievementDecision) -> None:
        r.publish(channel, decision.model_dump_json())

    return publish


def redis_dead_letter(r: redis.Redis | None = None, key: str = DEAD_LETTER_KEY) -> DeadLetter:
    r = r or _get_redis()

    def dead_letter(raw: str) -> None:
        r.rpush(key, raw)

    return dead_letter


def redis_queue_pop(
    r: redis.Redis | None = None,
    key: str = COMPLETION_QUEUE_KEY,
    timeout: int = TRIGGER_POLL_TIMEOUT,
) -> Callable[[], Optional[str]]:
    """Blocking pop from the completion queue; None when the wait times out."""
    r = r or _get_redis()

    def pop() -> Optional[str]:
        item = r.blpop([key], timeout=timeout)
        if item is None:
            return None
        return item[1]

    return pop


# ── Trigger ──────────────────────────────────────────────────────────────

class AchievementTrigger:
    def __init__(
        self,
        evaluator: AchievementEvaluator,
        publish: Publish,
        dead_letter: DeadLetter | None = None,
        max_workers: int = TRIGGER_MAX_WORKERS,
        max_attempts: int = TRIGGER_MAX_ATTEMPTS,
        retry_backoff: float = TRIGGER_RETRY_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.evaluator = evaluator
        self.publish = publish
        self.dead_letter = dead_letter
        self.max_workers = max(1, max_workers)
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    def handle(self, event: CompletionEvent) -> AchievementDecision:
        """Evaluate one event and forward the decision.

        "Now" is read once at dispatch and reused across retries. Raises the
        last collaborator error once attempts are exhausted.
        """
        now = self.evaluator.clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                results = self.evaluator.evaluate_at(event.user_id, event.project_id, event.team_id, now)
                break
            except Exception as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "Giving up on task %s for user %s after %d attempts: %s",
                        event.task_id, event.user_id, attempt, exc,
                    )
                    raise
                delay = self.retry_backoff * attempt
                logger.warning(
                    "Evaluation failed for task %s (attempt %d/%d), retrying in %.2fs: %s",
                    event.task_id, attempt, self.max_attempts, delay, exc,
                )
                self._sleep(delay)

        decision = AchievementDecision(
            task_id=event.task_id,
            user_id=event.user_id,
            team_id=event.team_id,
            project_id=event.project_id,
            evaluated_at=now,
            results=results,
            unlocked=[achievement_id for achievement_id, holds in results.items() if holds],
        )
        self.publish(decision)
        logger.info("Forwarded %d unlocked achievement(s) for user %s", len(decision.unlocked), event.user_id)
        return decision

    def dispatch(self, raw: str | bytes) -> Optional[AchievementDecision]:
        """Parse and handle one raw event. Never raises; failures are dead-lettered."""
        try:
            event = parse_event(raw)
        except MalformedEventError as exc:
            logger.warning("Dropping malformed completion event: %s", exc)
            self._dead_letter(raw)
            return None
        try:
            return self.handle(event)
        except Exception as exc:
            logger.error("Dead-lettering completion event for task %s: %s", event.task_id, exc)
            self._dead_letter(raw)
            return None

    def _dead_letter(self, raw: str | bytes) -> None:
        if self.dead_letter is None:
            return
        if isinstance(raw, bytes):
            raw = raw.decode(errors="replace")
        self.dead_letter(raw)

    async def _dispatch_in_worker(self, raw: str, slots: asyncio.Semaphore) -> Optional[AchievementDecision]:
        try:
            return await asyncio.to_thread(self.dispatch, raw)
        finally:
            slots.release()

    async def run(self, pop: Callable[[], Optional[str]], stop: threading.Event) -> int:
        """Consume events until ``stop`` is set. Returns how many were dispatched.

        At most ``max_workers`` evaluations are in flight; the loop stops
        pulling from the queue while all slots are busy.
        """
        slots = asyncio.Semaphore(self.max_workers)
        in_flight: set[asyncio.Task] = set()
        dispatched = 0
        logger.info("Achievement trigger started (%d workers)", self.max_workers)
        try:
            while not stop.is_set():
                raw = await asyncio.to_thread(pop)
                if raw is None:
                    continue
                await slots.acquire()
                task = asyncio.create_task(self._dispatch_in_worker(raw, slots))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
                dispatched += 1
        finally:
            if in_flight:
                await asyncio.gather(*in_flight)
            logger.info("Achievement trigger stopped after %d event(s)", dispatched)
        return dispatched


def create_redis_trigger(r: redis.Redis | None = None) -> AchievementTrigger:
    """Wire the trigger to Redis for history, decisions and dead letters."""
    r = r or _get_redis()
    evaluator = AchievementEvaluator(RedisTaskHistorySource(r))
    return AchievementTrigger(
        evaluator,
        publish=redis_publisher(r),
        dead_letter=redis_dead_letter(r),
    )
