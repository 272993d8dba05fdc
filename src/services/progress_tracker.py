"""Progress and milestone tracking."""

import math
from datetime import datetime, timedelta
from typing import Optional

from src.models.notification import NotificationIntent
from src.models.task import (
    AuditAction,
    Milestone,
    MilestoneStatus,
    Task,
    TaskMutation,
    TaskStatus,
    utc_now,
)
from src.utils.config import EngineConfig, get_config
from src.utils.errors import TaskValidationError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def refresh_milestones(milestones: list[Milestone], now: Optional[datetime] = None) -> list[Milestone]:
    """Mark pending milestones whose due date has passed as overdue.

    Completed and already-overdue milestones are returned unchanged, so
    repeated calls are no-ops.
    """
    now = now or utc_now()
    refreshed = []
    for milestone in milestones:
        if milestone.status == MilestoneStatus.PENDING and milestone.due_date < now:
            milestone = milestone.model_copy(update={"status": MilestoneStatus.OVERDUE})
        refreshed.append(milestone)
    return refreshed


def is_significant_change(old: int, new: int, config: Optional[EngineConfig] = None) -> bool:
    config = config or get_config()
    return abs(old - new) >= config.SIGNIFICANT_PROGRESS_DELTA


def crosses_near_completion(old: int, new: int, config: Optional[EngineConfig] = None) -> bool:
    """True only for an upward crossing of the near-completion threshold."""
    config = config or get_config()
    threshold = config.NEAR_COMPLETION_THRESHOLD
    return old < threshold <= new


def update_progress(
    task: Task,
    progress: int,
    actor_id: int,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    config: Optional[EngineConfig] = None,
) -> TaskMutation:
    """Record a progress update and decide who hears about it."""
    now = now or utc_now()
    config = config or get_config()

    if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
        raise TaskValidationError(
            "Progress must be an integer between 0 and 100",
            field="progress",
            details={"value": progress},
        )

    old = task.progress
    significant = is_significant_change(old, progress, config)
    near_completion = crosses_near_completion(old, progress, config)

    updated = task.model_copy(update={
        "progress": progress,
        "milestones": refresh_milestones(task.milestones, now),
    })
    updated = updated.with_audit(
        AuditAction.PROGRESS_UPDATED,
        actor_id,
        now,
        old_progress=old,
        new_progress=progress,
        notes=notes,
    )

    notifications = []
    if significant:
        message = f'Progress on task "{task.title}" updated to {progress}%'
        notifications.append(NotificationIntent(
            user_id=task.assigner_id,
            title="Task progress update",
            content=message,
        ))
        step = task.current_step()
        if task.status == TaskStatus.PENDING_APPROVAL and step is not None:
            notifications.append(NotificationIntent(
                user_id=step.assignee_id,
                title="Progress update on a task under review",
                content=message,
            ))
    if near_completion:
        notifications.append(NotificationIntent(
            user_id=task.assigner_id,
            title="Task nearly complete",
            content=f'Task "{task.title}" is about to be completed',
        ))

    logger.debug(
        "Progress evaluated",
        task_id=task.task_id,
        old_progress=old,
        new_progress=progress,
        significant=significant,
        near_completion=near_completion,
    )
    return TaskMutation(task=updated, notifications=notifications)


def estimate_completion(task: Task, now: Optional[datetime] = None) -> Optional[datetime]:
    """Project a completion date from the linear run-rate of recorded progress.

    Returns None with fewer than two progress updates, when the history spans
    no time, or when progress is flat or going backwards.
    """
    now = now or utc_now()
    history = sorted(
        (
            (entry.timestamp, entry.details.get("new_progress"))
            for entry in task.audit_trail
            if entry.action == AuditAction.PROGRESS_UPDATED and entry.details.get("new_progress") is not None
        ),
        key=lambda point: point[0],
    )
    if len(history) < 2:
        return None

    (first_at, first_progress), (last_at, last_progress) = history[0], history[-1]
    days_between = (last_at - first_at).total_seconds() / SECONDS_PER_DAY
    if days_between <= 0:
        return None

    daily_rate = (last_progress - first_progress) / days_between
    if daily_rate <= 0:
        return None

    remaining_days = (100 - task.progress) / daily_rate
    return now + timedelta(days=math.ceil(remaining_days))
