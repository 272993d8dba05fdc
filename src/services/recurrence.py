"""Recurrence expansion - future due dates and task instances from a source task."""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterator, Optional

from src.models.recurrence import PatternType, RecurrencePattern
from src.models.task import AuditEntry, AuditAction, Task, TaskStatus, generate_task_id, utc_now
from src.utils.config import EngineConfig, get_config
from src.utils.errors import TaskValidationError


def js_weekday(day: date) -> int:
    """Weekday number with Sunday as 0, as used by ``days_of_week``."""
    return (day.weekday() + 1) % 7


def add_months(start: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def validate_pattern(pattern: RecurrencePattern) -> None:
    """Reject patterns the generator could only answer with an empty schedule."""
    if pattern.pattern == PatternType.CUSTOM and not pattern.weekday_set():
        raise TaskValidationError(
            "Custom recurrence needs at least one weekday (0=Sunday .. 6=Saturday)",
            field="days_of_week",
        )
    if pattern.days_of_week and any(not 0 <= day <= 6 for day in pattern.days_of_week):
        raise TaskValidationError("Weekdays must be between 0 and 6", field="days_of_week")


def _candidates(pattern: RecurrencePattern, start: date) -> Iterator[date]:
    step = 0
    while True:
        if pattern.pattern == PatternType.DAILY:
            yield start + timedelta(days=step * pattern.interval)
        elif pattern.pattern == PatternType.WEEKLY:
            yield start + timedelta(weeks=step * pattern.interval)
        elif pattern.pattern == PatternType.MONTHLY:
            yield add_months(start, step * pattern.interval)
        elif pattern.pattern == PatternType.CUSTOM:
            yield start + timedelta(days=step)
        else:
            raise ValueError(f"Unhandled recurrence pattern: {pattern.pattern}")
        step += 1


def calculate_recurrence_dates(
    pattern: RecurrencePattern,
    start: Optional[date] = None,
    config: Optional[EngineConfig] = None,
) -> list[date]:
    """Deterministic due dates for a pattern, starting at ``start`` (inclusive).

    Bounded by ``occurrences`` (default 52) and ``end_date`` (inclusive). A
    custom pattern without weekdays matches no date and yields nothing.
    """
    config = config or get_config()
    start = start or utc_now().date()
    max_occurrences = pattern.occurrences or config.DEFAULT_MAX_OCCURRENCES

    weekdays = pattern.weekday_set()
    if pattern.pattern == PatternType.CUSTOM and not weekdays:
        return []

    dates: list[date] = []
    for candidate in _candidates(pattern, start):
        if len(dates) >= max_occurrences:
            break
        if pattern.end_date is not None and candidate > pattern.end_date:
            break
        if pattern.pattern == PatternType.CUSTOM and js_weekday(candidate) not in weekdays:
            continue
        dates.append(candidate)
    return dates


def create_recurring_instance(source: Task, due_date: date, now: Optional[datetime] = None) -> Task:
    """Clone ``source`` into a fresh instance due on ``due_date``.

    The instance starts over: new status, no progress, no comments, time,
    workflow, milestones or recurrence of its own, and a single ``created``
    audit entry pointing back at the source.
    """
    now = now or utc_now()
    created = AuditEntry(
        action=AuditAction.CREATED,
        timestamp=now,
        user_id=source.assigner_id,
        details={"recurring_from": source.task_id},
    )
    return source.model_copy(
        update={
            "task_id": generate_task_id(),
            "status": TaskStatus.NEW,
            "progress": 0,
            "due_date": due_date,
            "milestones": [],
            "time_entries": [],
            "actual_hours": Decimal("0"),
            "workflow": None,
            "comments": [],
            "audit_trail": [created],
            "recurrence": None,
            "parent_task_id": source.task_id,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
            "version": 0,
        },
        deep=True,
    )
