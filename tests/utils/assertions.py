"""Custom assertion helpers."""

from typing import Any

from src.models.task import AuditAction, Task
from src.models.workflow import StepStatus
from src.services.time_ledger import total_hours


def assert_last_audit(task: Task, action: AuditAction, user_id: int, /, **details: Any) -> None:
    """Assert the newest audit entry records ``action`` by ``user_id`` with (at least) ``details``."""
    assert task.audit_trail, "audit trail is empty"
    entry = task.audit_trail[-1]
    assert entry.action == action
    assert entry.user_id == user_id
    for key, value in details.items():
        assert entry.details.get(key) == value, f"audit detail {key!r}: {entry.details.get(key)!r} != {value!r}"


def assert_audit_grew_by_one(before: Task, after: Task) -> None:
    assert len(after.audit_trail) == len(before.audit_trail) + 1


def assert_step_statuses(task: Task, *statuses: StepStatus) -> None:
    assert task.workflow is not None
    assert [step.status for step in task.workflow.sequence] == list(statuses)


def assert_ledger_consistent(task: Task) -> None:
    """The cached hour total always matches the entry list."""
    assert task.actual_hours == total_hours(task.time_entries)


def assert_error_response(response: dict[str, Any], code: str) -> None:
    assert response["status"] == "error"
    assert response["error"]["code"] == code
    assert response["error"]["message"]
