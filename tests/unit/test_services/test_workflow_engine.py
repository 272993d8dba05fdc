"""Tests for the approval workflow state machine."""

import pytest

from src.models.task import AuditAction, TaskStatus
from src.models.workflow import StepAction, StepStatus
from src.services.workflow_engine import add_step_documents, initialize_workflow, process_step_action
from src.utils.errors import (
    ForbiddenError,
    InvalidStepActionError,
    InvalidTransitionError,
    NotFoundError,
    TaskValidationError,
)
from tests.utils.assertions import assert_audit_grew_by_one, assert_last_audit, assert_step_statuses
from tests.utils.factories import (
    ASSIGNEE_ID,
    ASSIGNER_ID,
    REVIEWER_IDS,
    aware,
    create_attachment,
    create_step_inputs,
    create_task,
    create_workflow_task,
)

NOW = aware(2024, 12, 9)
FIRST, SECOND, THIRD = REVIEWER_IDS


def approve(task, step, actor_id, notes=None):
    return process_step_action(task, step, actor_id, StepAction.APPROVE, notes=notes, now=NOW).task


# ---------------------------------------------------------------------------
# initialize_workflow
# ---------------------------------------------------------------------------

@pytest.mark.unit
def test_initialize_workflow_starts_chain():
    task = create_task(status=TaskStatus.IN_PROGRESS)

    mutation = initialize_workflow(task, create_step_inputs(), ASSIGNER_ID, now=NOW)

    updated = mutation.task
    assert updated.status == TaskStatus.PENDING_APPROVAL
    assert updated.workflow.current_step == 1
    assert updated.workflow.total_steps == 3
    assert_step_statuses(updated, StepStatus.PENDING, StepStatus.PENDING, StepStatus.PENDING)
    assert_last_audit(updated, AuditAction.WORKFLOW_INITIALIZED, ASSIGNER_ID, total_steps=3)
    assert [n.user_id for n in mutation.notifications] == [FIRST]


@pytest.mark.unit
def test_initialize_workflow_requires_steps():
    with pytest.raises(TaskValidationError) as exc_info:
        initialize_workflow(create_task(), [], ASSIGNER_ID, now=NOW)

    assert exc_info.value.field == "steps"


@pytest.mark.unit
def test_initialize_workflow_rejects_existing_workflow():
    with pytest.raises(InvalidTransitionError):
        initialize_workflow(create_workflow_task(), create_step_inputs(), ASSIGNER_ID, now=NOW)


@pytest.mark.unit
def test_initialize_workflow_rejects_terminal_task():
    with pytest.raises(InvalidTransitionError):
        initialize_workflow(create_task(status=TaskStatus.COMPLETED), create_step_inputs(), ASSIGNER_ID, now=NOW)


# ---------------------------------------------------------------------------
# process_step_action
# ---------------------------------------------------------------------------

@pytest.mark.unit
def test_three_step_chain_approves_in_order():
    """Approving 1, 2, 3 walks the pointer and finally approves the task."""
    task = create_workflow_task()

    task = approve(task, 1, FIRST)
    assert task.workflow.current_step == 2
    assert task.status == TaskStatus.PENDING_APPROVAL

    task = approve(task, 2, SECOND)
    assert task.workflow.current_step == 3
    assert task.status == TaskStatus.PENDING_APPROVAL

    task = approve(task, 3, THIRD)
    assert task.workflow.current_step == 3
    assert task.status == TaskStatus.APPROVED
    assert_step_statuses(task, StepStatus.COMPLETED, StepStatus.COMPLETED, StepStatus.COMPLETED)
    assert all(step.completed_at == NOW for step in task.workflow.sequence)


@pytest.mark.unit
def test_step_action_audit_records_step_action_and_notes():
    task = create_workflow_task()

    approved = approve(task, 1, FIRST, notes="Looks good")

    assert_audit_grew_by_one(task, approved)
    entry = approved.audit_trail[-1]
    assert entry.action == AuditAction.WORKFLOW_ADVANCED
    assert entry.user_id == FIRST
    assert entry.details == {"step": 1, "action": "approve", "notes": "Looks good"}


@pytest.mark.unit
def test_reject_after_first_approval():
    """Rejecting step 2 leaves it pending and step 1 completed."""
    task = approve(create_workflow_task(), 1, FIRST)

    mutation = process_step_action(task, 2, SECOND, StepAction.REJECT, notes="Missing exhibit B", now=NOW)

    rejected = mutation.task
    assert rejected.status == TaskStatus.REJECTED
    assert_step_statuses(rejected, StepStatus.COMPLETED, StepStatus.PENDING, StepStatus.PENDING)
    assert rejected.workflow.sequence[1].notes == "Missing exhibit B"
    assert rejected.workflow.sequence[2] == task.workflow.sequence[2]
    assert_last_audit(rejected, AuditAction.WORKFLOW_ADVANCED, SECOND, step=2, action="reject")
    assert [n.user_id for n in mutation.notifications] == [ASSIGNEE_ID]


@pytest.mark.unit
def test_request_changes_behaves_like_reject():
    mutation = process_step_action(
        create_workflow_task(), 1, FIRST, StepAction.REQUEST_CHANGES, notes="Tighten section 2", now=NOW
    )

    assert mutation.task.status == TaskStatus.REJECTED
    assert mutation.task.workflow.sequence[0].status == StepStatus.PENDING
    assert "Tighten section 2" in mutation.notifications[0].content


@pytest.mark.unit
def test_step_idempotence():
    """A second identical action fails and leaves the first result intact."""
    after_first = approve(create_workflow_task(auto_advance=False), 1, FIRST)

    with pytest.raises(InvalidStepActionError):
        process_step_action(after_first, 1, FIRST, StepAction.APPROVE, now=NOW)

    assert after_first.workflow.sequence[0].status == StepStatus.COMPLETED


@pytest.mark.unit
def test_exactly_one_audit_entry_per_action():
    task = create_workflow_task()
    updated = approve(task, 1, FIRST, notes="Looks good")

    assert_audit_grew_by_one(task, updated)
    assert_last_audit(updated, AuditAction.WORKFLOW_ADVANCED, FIRST, step=1, action="approve", notes="Looks good")


@pytest.mark.unit
def test_approve_and_advance_notifies_assignee_and_next_step():
    mutation = process_step_action(create_workflow_task(), 1, FIRST, StepAction.APPROVE, now=NOW)

    assert [n.user_id for n in mutation.notifications] == [ASSIGNEE_ID, SECOND]


@pytest.mark.unit
def test_non_assignee_is_forbidden():
    with pytest.raises(ForbiddenError):
        process_step_action(create_workflow_task(), 1, SECOND, StepAction.APPROVE, now=NOW)


@pytest.mark.unit
@pytest.mark.parametrize("step", [0, 4])
def test_step_out_of_range(step):
    with pytest.raises(InvalidStepActionError):
        process_step_action(create_workflow_task(), step, FIRST, StepAction.APPROVE, now=NOW)


@pytest.mark.unit
def test_task_without_workflow():
    with pytest.raises(InvalidStepActionError):
        process_step_action(create_task(), 1, FIRST, StepAction.APPROVE, now=NOW)


@pytest.mark.unit
def test_task_must_be_pending_approval():
    with pytest.raises(InvalidStepActionError):
        process_step_action(create_workflow_task(status=TaskStatus.REJECTED), 1, FIRST, StepAction.APPROVE, now=NOW)


@pytest.mark.unit
def test_auto_advance_only_current_step_may_act():
    with pytest.raises(InvalidStepActionError):
        process_step_action(create_workflow_task(), 2, SECOND, StepAction.APPROVE, now=NOW)


@pytest.mark.unit
def test_without_auto_advance_steps_act_in_any_order():
    task = create_workflow_task(auto_advance=False)

    task = approve(task, 3, THIRD)
    task = approve(task, 1, FIRST)
    assert task.status == TaskStatus.PENDING_APPROVAL
    assert task.workflow.current_step == 1

    task = approve(task, 2, SECOND)
    assert task.status == TaskStatus.APPROVED


@pytest.mark.unit
def test_final_step_approval_without_all_approvals_skips_pending_steps():
    task = create_workflow_task(auto_advance=False, require_all_approvals=False)

    task = approve(task, 1, FIRST)
    task = approve(task, 3, THIRD)

    assert task.status == TaskStatus.APPROVED
    assert_step_statuses(task, StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.COMPLETED)


@pytest.mark.unit
@pytest.mark.parametrize("action", [StepAction.REJECT, StepAction.REQUEST_CHANGES])
@pytest.mark.parametrize("notes", [None, "", "   "])
def test_reject_requires_notes(action, notes):
    with pytest.raises(TaskValidationError) as exc_info:
        process_step_action(create_workflow_task(), 1, FIRST, action, notes=notes, now=NOW)

    assert exc_info.value.field == "notes"


@pytest.mark.unit
def test_resubmitted_task_continues_at_rejected_step():
    task = approve(create_workflow_task(), 1, FIRST)
    task = process_step_action(task, 2, SECOND, StepAction.REJECT, notes="Fix totals", now=NOW).task
    task = task.model_copy(update={"status": TaskStatus.PENDING_APPROVAL})

    task = approve(task, 2, SECOND)

    assert task.workflow.current_step == 3
    assert_step_statuses(task, StepStatus.COMPLETED, StepStatus.COMPLETED, StepStatus.PENDING)


# ---------------------------------------------------------------------------
# add_step_documents
# ---------------------------------------------------------------------------

@pytest.mark.unit
def test_add_step_documents_tags_comment_and_leaves_step_alone():
    task = create_workflow_task()
    documents = [create_attachment(), create_attachment()]

    mutation = add_step_documents(task, 2, ASSIGNEE_ID, documents, now=NOW)

    updated = mutation.task
    comment = updated.comments[-1]
    assert comment.workflow_step == 2
    assert comment.attachments == documents
    assert updated.workflow == task.workflow
    assert_last_audit(updated, AuditAction.FILE_ATTACHED, ASSIGNEE_ID, step_number=2, document_count=2)
    assert [n.user_id for n in mutation.notifications] == [SECOND]


@pytest.mark.unit
def test_add_step_documents_requires_documents_and_step():
    with pytest.raises(TaskValidationError):
        add_step_documents(create_workflow_task(), 1, ASSIGNEE_ID, [], now=NOW)
    with pytest.raises(NotFoundError):
        add_step_documents(create_workflow_task(), 9, ASSIGNEE_ID, [create_attachment()], now=NOW)
