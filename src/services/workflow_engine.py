"""Approval workflow state machine.

Pure functions over a ``Task`` snapshot. Each returns a ``TaskMutation``
holding the new aggregate (with its single audit entry) and the notifications
to send once the aggregate has been persisted.
"""

from datetime import datetime
from typing import Optional

from src.models.notification import NotificationIntent
from src.models.task import (
    Attachment,
    AuditAction,
    Comment,
    Task,
    TaskMutation,
    TaskStatus,
    utc_now,
)
from src.models.workflow import (
    StepAction,
    StepStatus,
    StepType,
    Workflow,
    WorkflowStep,
    WorkflowStepInput,
)
from src.utils.errors import (
    ForbiddenError,
    InvalidStepActionError,
    InvalidTransitionError,
    NotFoundError,
    TaskEngineError,
    TaskValidationError,
)
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

ACTION_LABELS = {
    StepAction.APPROVE: "Approved",
    StepAction.REJECT: "Rejected",
    StepAction.REQUEST_CHANGES: "Changes requested on",
}


def _step_request(task: Task, step: WorkflowStep) -> NotificationIntent:
    verb = "approval" if step.type == StepType.APPROVAL else "review"
    return NotificationIntent(
        user_id=step.assignee_id,
        title=f'Action required - task "{task.title}"',
        content=f'Your {verb} is required at step {step.step} "{step.name}"',
    )


def initialize_workflow(
    task: Task,
    steps: list[WorkflowStepInput],
    actor_id: int,
    auto_advance: bool = True,
    require_all_approvals: bool = True,
    now: Optional[datetime] = None,
) -> TaskMutation:
    """Attach a fresh approval chain and put the task into ``pending-approval``."""
    now = now or utc_now()

    if not steps:
        raise TaskValidationError("A workflow needs at least one step", field="steps")
    if task.workflow is not None:
        raise InvalidTransitionError(
            "Task already has a workflow",
            details={"current_step": task.workflow.current_step, "total_steps": task.workflow.total_steps},
        )
    if task.is_terminal:
        raise InvalidTransitionError(
            f"Cannot start a workflow on a {task.status.value} task",
            details={"status": task.status.value},
        )

    workflow = Workflow.from_inputs(steps, auto_advance=auto_advance, require_all_approvals=require_all_approvals)
    updated = task.model_copy(update={"workflow": workflow, "status": TaskStatus.PENDING_APPROVAL})
    updated = updated.with_audit(
        AuditAction.WORKFLOW_INITIALIZED,
        actor_id,
        now,
        total_steps=workflow.total_steps,
        previous_status=task.status.value,
        auto_advance=auto_advance,
        require_all_approvals=require_all_approvals,
    )

    logger.info(
        "Workflow initialized",
        task_id=task.task_id,
        total_steps=workflow.total_steps,
        first_assignee_id=workflow.current.assignee_id,
    )
    return TaskMutation(task=updated, notifications=[_step_request(updated, workflow.current)])


def _require_step(task: Task, step_number: int, missing: type[TaskEngineError] = InvalidStepActionError) -> WorkflowStep:
    if task.workflow is None:
        raise InvalidStepActionError("Task has no workflow", details={"step": step_number})
    step = task.workflow.get_step(step_number)
    if step is None:
        raise missing(
            f"Workflow step {step_number} does not exist",
            details={"step": step_number, "total_steps": task.workflow.total_steps},
        )
    return step


def _approve(workflow: Workflow, step_number: int, notes: Optional[str], now: datetime) -> tuple[Workflow, bool, Optional[WorkflowStep]]:
    """Apply an approval. Returns (workflow, task_approved, next_step_to_notify)."""
    workflow = workflow.update_step(step_number, status=StepStatus.COMPLETED, completed_at=now, notes=notes)
    next_step = None

    if workflow.auto_advance and step_number < workflow.total_steps:
        workflow = workflow.model_copy(update={"current_step": step_number + 1})
        next_step = workflow.current

    if workflow.require_all_approvals:
        # Completion is re-verified over the whole sequence, never taken from the pointer
        approved = workflow.all_completed()
    else:
        approved = step_number == workflow.total_steps
        if approved:
            for step in workflow.sequence:
                if step.status == StepStatus.PENDING:
                    workflow = workflow.update_step(step.step, status=StepStatus.SKIPPED)

    return workflow, approved, next_step


def process_step_action(
    task: Task,
    step_number: int,
    actor_id: int,
    action: StepAction,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TaskMutation:
    """Approve, reject or request changes on one workflow step.

    Raises:
        InvalidStepActionError: no workflow, step out of range, step already
            processed, task not awaiting approval, or step not current.
        ForbiddenError: actor is not the step's assignee.
        TaskValidationError: reject / request-changes without notes.
    """
    now = now or utc_now()
    action = StepAction(action)
    step = _require_step(task, step_number)
    workflow = task.workflow

    if step.assignee_id != actor_id:
        raise ForbiddenError(
            f"actor is not the assignee of workflow step {step_number}",
            details={"step": step_number},
        )
    if step.status != StepStatus.PENDING:
        raise InvalidStepActionError(
            f"Workflow step {step_number} has already been processed",
            details={"step": step_number, "step_status": step.status.value},
        )
    if task.status != TaskStatus.PENDING_APPROVAL:
        raise InvalidStepActionError(
            "Task is not awaiting approval",
            details={"step": step_number, "status": task.status.value},
        )
    if workflow.auto_advance and step_number != workflow.current_step:
        raise InvalidStepActionError(
            f"Workflow step {step_number} is not the current step",
            details={"step": step_number, "current_step": workflow.current_step},
        )

    notes = notes.strip() if notes else None
    if action in (StepAction.REJECT, StepAction.REQUEST_CHANGES) and not notes:
        raise TaskValidationError(f"Notes are required to {action.value}", field="notes")

    status = task.status
    next_step = None
    if action == StepAction.APPROVE:
        workflow, approved, next_step = _approve(workflow, step_number, notes, now)
        if approved:
            status = TaskStatus.APPROVED
    elif action in (StepAction.REJECT, StepAction.REQUEST_CHANGES):
        # The step is not consumed; it stays pending for the next pass
        workflow = workflow.update_step(step_number, notes=notes)
        status = TaskStatus.REJECTED
    else:
        raise ValueError(f"Unhandled step action: {action}")

    updated = task.model_copy(update={"workflow": workflow, "status": status})
    updated = updated.with_audit(
        AuditAction.WORKFLOW_ADVANCED,
        actor_id,
        now,
        step=step_number,
        action=action.value,
        notes=notes,
    )

    message = f"{ACTION_LABELS[action]} step {step_number} ({step.name})"
    if notes:
        message = f"{message}\nNotes: {notes}"
    notifications = [
        NotificationIntent(
            user_id=task.assignee_id,
            title=f'Workflow update - task "{task.title}"',
            content=message,
        )
    ]
    if next_step is not None:
        notifications.append(_step_request(updated, next_step))

    logger.info(
        "Workflow step processed",
        task_id=task.task_id,
        step=step_number,
        step_action=action.value,
        new_status=status.value,
        current_step=workflow.current_step,
    )
    return TaskMutation(task=updated, notifications=notifications)


def add_step_documents(
    task: Task,
    step_number: int,
    actor_id: int,
    documents: list[Attachment],
    now: Optional[datetime] = None,
) -> TaskMutation:
    """Attach documents to a step as a tagged comment. Step status is untouched.

    A step number outside the chain is a missing resource here (NotFoundError),
    unlike step actions where it is an illegal action.
    """
    now = now or utc_now()
    step = _require_step(task, step_number, missing=NotFoundError)

    if not documents:
        raise TaskValidationError("At least one document is required", field="documents")

    comment = Comment(
        author_id=actor_id,
        content=f"Documents added for review at step {step_number}",
        timestamp=now,
        attachments=list(documents),
        workflow_step=step_number,
    )
    updated = task.model_copy(update={"comments": [*task.comments, comment]})
    updated = updated.with_audit(
        AuditAction.FILE_ATTACHED,
        actor_id,
        now,
        step_number=step_number,
        document_count=len(documents),
    )

    notification = NotificationIntent(
        user_id=step.assignee_id,
        title=f'New documents for review - task "{task.title}"',
        content=f"{len(documents)} document(s) added for review at step {step_number}",
    )
    return TaskMutation(task=updated, notifications=[notification])
