"""Application-wide configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

load_dotenv()

# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

# ── Completion Event Transport ───────────────────────────────────────────

# Redis list the task service pushes completion events onto
COMPLETION_QUEUE_KEY: str = os.getenv("COMPLETION_QUEUE_KEY", "task-completed")

# Pub/sub channel the award component listens on
ACHIEVEMENT_EVENTS_CHANNEL: str = os.getenv(
    "ACHIEVEMENT_EVENTS_CHANNEL", "achievements:events"
)

# Raw events that could not be parsed or evaluated end up here
DEAD_LETTER_KEY: str = os.getenv("DEAD_LETTER_KEY", "task-completed:dead")

# ── Trigger Adapter ──────────────────────────────────────────────────────

TRIGGER_MAX_WORKERS: int = int(os.getenv("TRIGGER_MAX_WORKERS", "4"))
TRIGGER_MAX_ATTEMPTS: int = int(os.getenv("TRIGGER_MAX_ATTEMPTS", "3"))
TRIGGER_RETRY_BACKOFF: float = float(os.getenv("TRIGGER_RETRY_BACKOFF", "0.5"))  # seconds
TRIGGER_POLL_TIMEOUT: int = int(os.getenv("TRIGGER_POLL_TIMEOUT", "1"))  # seconds

# ── Calendar Bucketing ───────────────────────────────────────────────────

# Day and month buckets are taken in this zone. Stored instants are
# converted into it on read and the evaluation clock reads "now" in it.
CALENDAR_TIMEZONE: str = os.getenv("CALENDAR_TIMEZONE", "UTC")
