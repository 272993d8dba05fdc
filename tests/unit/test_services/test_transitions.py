"""Tests for the status transition table."""

import itertools

import pytest

from src.models.task import TaskMode, TaskStatus
from src.services.transitions import (
    SIMPLE_TRANSITIONS,
    TRANSITION_TABLES,
    WORKFLOW_TRANSITIONS,
    allowed_transitions,
    check_transition,
    is_legal_transition,
)
from src.utils.errors import ForbiddenError, InvalidTransitionError
from tests.utils.factories import ASSIGNEE_ID, ASSIGNER_ID, OUTSIDER_ID, create_task, create_workflow_task

ALL_PAIRS = list(itertools.product(TaskStatus, TaskStatus))


@pytest.mark.unit
@pytest.mark.parametrize("mode", list(TaskMode))
def test_tables_cover_every_status(mode):
    assert set(TRANSITION_TABLES[mode]) == set(TaskStatus)


@pytest.mark.unit
def test_modes_differ_only_in_in_progress_edges():
    differing = {status for status in TaskStatus if SIMPLE_TRANSITIONS[status] != WORKFLOW_TRANSITIONS[status]}

    assert differing == {TaskStatus.IN_PROGRESS}
    assert SIMPLE_TRANSITIONS[TaskStatus.IN_PROGRESS] == {
        TaskStatus.COMPLETED, TaskStatus.REJECTED, TaskStatus.CANCELLED,
    }
    assert WORKFLOW_TRANSITIONS[TaskStatus.IN_PROGRESS] == {TaskStatus.PENDING_APPROVAL, TaskStatus.CANCELLED}


@pytest.mark.unit
@pytest.mark.parametrize("current,requested", ALL_PAIRS)
def test_transition_closure(current, requested):
    """Pairs outside the table are illegal for every actor, in both modes."""
    for task in (create_task(status=current), create_workflow_task(status=current)):
        if requested in allowed_transitions(current, task.mode):
            continue
        for actor_id in (ASSIGNER_ID, ASSIGNEE_ID, OUTSIDER_ID):
            assert not is_legal_transition(current, requested, actor_id, task)
            with pytest.raises(InvalidTransitionError):
                check_transition(current, requested, actor_id, task)


@pytest.mark.unit
@pytest.mark.parametrize("terminal", [TaskStatus.COMPLETED, TaskStatus.CANCELLED])
def test_terminal_states_have_no_exits(terminal):
    for mode in TaskMode:
        assert allowed_transitions(terminal, mode) == frozenset()


@pytest.mark.unit
def test_completed_cannot_return_to_pending_approval():
    task = create_task(status=TaskStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError) as exc_info:
        check_transition(TaskStatus.COMPLETED, TaskStatus.PENDING_APPROVAL, ASSIGNEE_ID, task)

    assert exc_info.value.details["allowed"] == []
    assert exc_info.value.details["mode"] == "simple"


@pytest.mark.unit
def test_assignee_only_transition_rejects_assigner():
    """new -> in-progress is in the table but belongs to the assignee."""
    task = create_task(status=TaskStatus.NEW)

    assert not is_legal_transition(TaskStatus.NEW, TaskStatus.IN_PROGRESS, ASSIGNER_ID, task)
    with pytest.raises(ForbiddenError):
        check_transition(TaskStatus.NEW, TaskStatus.IN_PROGRESS, ASSIGNER_ID, task)

    assert is_legal_transition(TaskStatus.NEW, TaskStatus.IN_PROGRESS, ASSIGNEE_ID, task)
    check_transition(TaskStatus.NEW, TaskStatus.IN_PROGRESS, ASSIGNEE_ID, task)


@pytest.mark.unit
def test_assigner_only_transitions():
    task = create_workflow_task()

    for target in (TaskStatus.APPROVED, TaskStatus.REJECTED):
        with pytest.raises(ForbiddenError):
            check_transition(TaskStatus.PENDING_APPROVAL, target, ASSIGNEE_ID, task)
        check_transition(TaskStatus.PENDING_APPROVAL, target, ASSIGNER_ID, task)


@pytest.mark.unit
def test_simple_mode_assignee_completes_directly():
    task = create_task(status=TaskStatus.IN_PROGRESS)

    assert is_legal_transition(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, ASSIGNEE_ID, task)
    assert not is_legal_transition(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, ASSIGNER_ID, task)


@pytest.mark.unit
def test_workflow_mode_requires_approval_before_completion():
    task = create_workflow_task(status=TaskStatus.IN_PROGRESS)

    with pytest.raises(InvalidTransitionError):
        check_transition(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, ASSIGNEE_ID, task)


@pytest.mark.unit
def test_ungated_transitions_allow_anyone():
    task = create_task(status=TaskStatus.DRAFT)

    assert is_legal_transition(TaskStatus.DRAFT, TaskStatus.NEW, OUTSIDER_ID, task)
