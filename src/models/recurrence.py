"""Recurrence pattern model."""

from enum import Enum
from typing import Optional
from datetime import date
from pydantic import BaseModel, Field


class PatternType(str, Enum):
    """Recurrence rule kind."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class RecurrencePattern(BaseModel):
    """Rule for generating future instances of a task.

    ``days_of_week`` uses 0 for Sunday through 6 for Saturday and only applies
    to the ``custom`` pattern.
    """
    enabled: bool = True
    pattern: PatternType = Field(..., description="daily, weekly, monthly or custom")
    interval: int = Field(default=1, ge=1, description="Step size in pattern units")
    days_of_week: Optional[list[int]] = Field(None, description="Weekdays for custom patterns (0=Sunday)")
    end_date: Optional[date] = Field(None, description="Last date (inclusive) an instance may fall on")
    occurrences: Optional[int] = Field(None, ge=1, description="Maximum number of instances")
    related_tasks: list[str] = Field(default_factory=list, description="Instance task IDs")

    def weekday_set(self) -> set[int]:
        return {day for day in (self.days_of_week or []) if 0 <= day <= 6}
