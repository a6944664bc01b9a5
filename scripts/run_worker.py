#!/usr/bin/env python3
"""Run the achievement trigger against Redis.

Usage:
    # From the repo root with the venv activated:
    python scripts/run_worker.py

Pops completion events off the COMPLETION_QUEUE_KEY list, evaluates the
assignee's achievements and publishes each decision on
ACHIEVEMENT_EVENTS_CHANNEL. Ctrl+C finishes in-flight evaluations and exits.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from pathlib import Path

# Ensure the repo root is on sys.path so `from achievements.…` imports work
_repo_dir = Path(__file__).resolve().parent.parent
if str(_repo_dir) not in sys.path:
    sys.path.insert(0, str(_repo_dir))

from achievements.config.settings import (  # noqa: E402
    ACHIEVEMENT_EVENTS_CHANNEL,
    CALENDAR_TIMEZONE,
    COMPLETION_QUEUE_KEY,
    DEAD_LETTER_KEY,
    REDIS_URL,
)
from achievements.engine.trigger import create_redis_trigger, redis_queue_pop  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-7s  %(name)-30s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run_worker")


def main():
    import redis

    r = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    trigger = create_redis_trigger(r)

    logger.info("=" * 60)
    logger.info("  Achievement trigger")
    logger.info("=" * 60)
    logger.info("  Redis            %s", REDIS_URL)
    logger.info("  Queue            %s", COMPLETION_QUEUE_KEY)
    logger.info("  Decisions        %s", ACHIEVEMENT_EVENTS_CHANNEL)
    logger.info("  Dead letters     %s", DEAD_LETTER_KEY)
    logger.info("  Calendar zone    %s", CALENDAR_TIMEZONE)
    logger.info("  Workers          %d", trigger.max_workers)
    logger.info("  Press Ctrl+C to stop")
    logger.info("=" * 60)

    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Shutting down, waiting for in-flight evaluations...")
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    handled = asyncio.run(trigger.run(redis_queue_pop(r), stop))
    logger.info("Stopped after %d event(s).", handled)


if __name__ == "__main__":
    main()
