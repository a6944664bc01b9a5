"""Typed message models for the completion-event transport.

Both messages are pydantic models so they validate on the way in and
serialize to JSON on the way out.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class CompletionEvent(BaseModel):
    """Emitted by the task service when a task reaches APPROVED."""
    task_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    team_id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)

    @field_validator("task_id", "user_id", "team_id", "project_id", mode="before")
    @classmethod
    def _ids_as_text(cls, value):
        # Producers send numeric database ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class AchievementDecision(BaseModel):
    """Forwarded to the award component after each evaluation."""
    task_id: str
    user_id: str
    team_id: str
    project_id: str
    evaluated_at: datetime        # the single "now" every rule agreed on
    results: dict[str, bool]      # achievement id -> holds
    unlocked: list[str]           # ids whose rule holds, catalogue order
