"""Status transition table.

Two canonical graphs, chosen by ``TaskMode``:

* WORKFLOW (task carries an approval chain): work goes through
  ``pending-approval`` before it can be approved and completed.
* SIMPLE (no approval chain): the assignee closes work directly from
  ``in-progress``.

The legacy simple-flow edge ``completed -> pending-approval`` is not part of
either graph; ``completed`` and ``cancelled`` are terminal in both modes.
"""

from typing import Optional

from src.models.task import Task, TaskMode, TaskStatus
from src.utils.errors import ForbiddenError, InvalidTransitionError

S = TaskStatus

WORKFLOW_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    S.DRAFT: frozenset({S.NEW}),
    S.NEW: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.PENDING_APPROVAL, S.CANCELLED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.REJECTED, S.IN_PROGRESS}),
    S.APPROVED: frozenset({S.COMPLETED, S.IN_PROGRESS}),
    S.REJECTED: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

SIMPLE_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    **WORKFLOW_TRANSITIONS,
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.REJECTED, S.CANCELLED}),
}

TRANSITION_TABLES: dict[TaskMode, dict[TaskStatus, frozenset[TaskStatus]]] = {
    TaskMode.WORKFLOW: WORKFLOW_TRANSITIONS,
    TaskMode.SIMPLE: SIMPLE_TRANSITIONS,
}

# Target statuses only a specific party may move a task into
ASSIGNEE_ONLY_TARGETS = frozenset({S.IN_PROGRESS, S.COMPLETED})
ASSIGNER_ONLY_TARGETS = frozenset({S.APPROVED, S.REJECTED})


def allowed_transitions(current: TaskStatus, mode: TaskMode = TaskMode.WORKFLOW) -> frozenset[TaskStatus]:
    """Statuses reachable from ``current`` in the given mode."""
    return TRANSITION_TABLES[mode][TaskStatus(current)]


def is_in_table(current: TaskStatus, requested: TaskStatus, mode: TaskMode) -> bool:
    return TaskStatus(requested) in allowed_transitions(current, mode)


def actor_gate_violation(requested: TaskStatus, actor_id: int, task: Task) -> Optional[str]:
    """Name the party required for ``requested`` when ``actor_id`` is not it."""
    requested = TaskStatus(requested)
    if requested in ASSIGNEE_ONLY_TARGETS and actor_id != task.assignee_id:
        return f"only the assignee may move a task to {requested.value}"
    if requested in ASSIGNER_ONLY_TARGETS and actor_id != task.assigner_id:
        return f"only the assigner may move a task to {requested.value}"
    return None


def is_legal_transition(current: TaskStatus, requested: TaskStatus, actor_id: int, task: Task) -> bool:
    """True when the table for the task's mode allows the edge and the actor passes the gate."""
    if not is_in_table(current, requested, task.mode):
        return False
    return actor_gate_violation(requested, actor_id, task) is None


def check_transition(current: TaskStatus, requested: TaskStatus, actor_id: int, task: Task) -> None:
    """Raise the typed error for an illegal transition.

    Raises:
        InvalidTransitionError: the edge is not in the table for the task's mode.
        ForbiddenError: the edge exists but the actor may not trigger it.
    """
    current = TaskStatus(current)
    requested = TaskStatus(requested)
    mode = task.mode

    if not is_in_table(current, requested, mode):
        allowed = sorted(status.value for status in allowed_transitions(current, mode))
        raise InvalidTransitionError(
            f"Cannot change status from {current.value} to {requested.value}",
            details={
                "from": current.value,
                "to": requested.value,
                "mode": mode.value,
                "allowed": allowed,
            },
        )

    violation = actor_gate_violation(requested, actor_id, task)
    if violation:
        raise ForbiddenError(violation, details={"from": current.value, "to": requested.value})
