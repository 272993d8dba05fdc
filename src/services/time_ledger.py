"""Time and billing ledger."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.models.billing import BillingInfo, RateType, TimeEntry, TimeSummary
from src.models.task import AuditAction, Task, TaskMutation, TERMINAL_STATUSES, utc_now
from src.utils.errors import ForbiddenError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

ZERO = Decimal("0")


def total_hours(entries: list[TimeEntry]) -> Decimal:
    return sum((entry.hours for entry in entries), ZERO)


def reconcile_actual_hours(task: Task) -> Task:
    """Recompute the cached ``actual_hours`` from the entry list (the entry list wins)."""
    recomputed = total_hours(task.time_entries)
    if recomputed != task.actual_hours:
        logger.warning(
            "Cached hours diverged from time entries; recomputed",
            task_id=task.task_id,
            cached_hours=str(task.actual_hours),
            recomputed_hours=str(recomputed),
        )
        return task.model_copy(update={"actual_hours": recomputed})
    return task


def can_log_time(task: Task, actor_id: int) -> bool:
    """Assignee or assigner, while the task is still open."""
    return actor_id in (task.assignee_id, task.assigner_id) and task.status not in TERMINAL_STATUSES


def add_time_entry(task: Task, entry: TimeEntry, now: Optional[datetime] = None) -> TaskMutation:
    """Append a time entry and keep the cached total in step with the entries."""
    now = now or utc_now()

    if not can_log_time(task, entry.user_id):
        raise ForbiddenError(
            "only the assignee or assigner may log time on an open task",
            details={"status": task.status.value},
        )

    updated = task.model_copy(update={
        "time_entries": [*task.time_entries, entry],
        "actual_hours": task.actual_hours + entry.hours,
    })
    updated = reconcile_actual_hours(updated)
    updated = updated.with_audit(
        AuditAction.TIME_TRACKED,
        entry.user_id,
        now,
        hours=str(entry.hours),
        date=entry.entry_date.isoformat(),
        billable=entry.billable,
    )
    return TaskMutation(task=updated)


def update_billing_info(
    task: Task,
    actor_id: int,
    billing: BillingInfo,
    now: Optional[datetime] = None,
) -> TaskMutation:
    """Replace the billing block. Assigner only."""
    now = now or utc_now()

    if actor_id != task.assigner_id:
        raise ForbiddenError("only the assigner may update billing information")

    updated = task.model_copy(update={"billing": billing})
    updated = updated.with_audit(
        AuditAction.BILLING_UPDATED,
        actor_id,
        now,
        **billing.model_dump(mode="json"),
    )
    return TaskMutation(task=updated)


def compute_billing_amount(billing: Optional[BillingInfo], actual_hours: Decimal) -> Decimal:
    """Amount owed for a task. Never stored; always derived."""
    if billing is None:
        return ZERO

    rate = billing.rate if billing.rate is not None else ZERO
    if billing.rate_type == RateType.HOURLY:
        return Decimal(actual_hours) * rate
    if billing.rate_type == RateType.FIXED:
        return rate
    if billing.rate_type == RateType.NON_BILLABLE:
        return ZERO
    raise ValueError(f"Unhandled rate type: {billing.rate_type}")


def summarize_time(task: Task) -> TimeSummary:
    """Per-task time report."""
    billable = sum((entry.hours for entry in task.time_entries if entry.billable), ZERO)
    total = total_hours(task.time_entries)
    return TimeSummary(
        task_id=task.task_id,
        total_hours=total,
        billable_hours=billable,
        non_billable_hours=total - billable,
        entry_count=len(task.time_entries),
        amount=compute_billing_amount(task.billing, total),
        currency=task.billing.currency if task.billing else None,
    )
