"""Task orchestrator - the composition root of the workflow engine.

Every operation follows the same sequence: load the task snapshot, authorize
the actor, let a pure decision function compute the new aggregate (with its
audit entry) and the notifications it implies, persist the aggregate under the
snapshot's version, then dispatch the notifications best-effort.
"""

from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

from src.models.actor import Actor
from src.models.billing import BillingInfo, TimeEntry
from src.models.notification import NotificationIntent
from src.models.recurrence import RecurrencePattern
from src.models.task import (
    Attachment,
    AuditAction,
    AuditEntry,
    Comment,
    RecurringTaskUpdate,
    Task,
    TaskCreate,
    TaskMutation,
    TaskStatus,
    TaskView,
    utc_now,
)
from src.models.workflow import StepAction, WorkflowCreate
from src.services import progress_tracker, recurrence, time_ledger, workflow_engine
from src.services.employee_directory import EmployeeDirectory, SupabaseEmployeeDirectory
from src.services.notifications import NotificationSink, SupabaseNotificationSink
from src.services.permissions import PermissionAction, is_authorized
from src.services.task_store import SupabaseTaskStore, TaskStore
from src.services.transitions import check_transition
from src.utils.config import EngineConfig, get_config
from src.utils.errors import (
    ForbiddenError,
    InternalError,
    NotFoundError,
    TaskEngineError,
    TaskValidationError,
    validation_error_from_pydantic,
)
from src.utils.logging import get_structured_logger, log_timing, operation_context, sanitize_notes, setup_logging

logger = get_structured_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
ResultT = TypeVar("ResultT")

Payload = Union[BaseModel, dict[str, Any]]

# Target status -> (recipient, title, message template)
STATUS_NOTIFICATIONS = {
    TaskStatus.IN_PROGRESS: ("assigner", "Task in progress", 'Work has started on task "{title}"'),
    TaskStatus.PENDING_APPROVAL: ("assigner", "Task awaiting approval", 'Task "{title}" was submitted for approval'),
    TaskStatus.COMPLETED: ("assigner", "Task completed", 'Task "{title}" has been completed'),
    TaskStatus.APPROVED: ("assignee", "Task approved", 'Task "{title}" has been approved'),
    TaskStatus.REJECTED: ("assignee", "Task rejected", 'Task "{title}" has been rejected'),
    TaskStatus.CANCELLED: ("other", "Task cancelled", 'Task "{title}" has been cancelled'),
}


def _parse(model: type[ModelT], payload: Payload, message: str) -> ModelT:
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise validation_error_from_pydantic(e, message) from e


def _recipient(role: str, task: Task, actor_id: int) -> int:
    if role == "assigner":
        return task.assigner_id
    if role == "assignee":
        return task.assignee_id
    # "other": whichever of the two parties did not act
    return task.assignee_id if actor_id == task.assigner_id else task.assigner_id


def status_change_notifications(task: Task, new_status: TaskStatus, actor_id: int) -> list[NotificationIntent]:
    """Who hears about a status change. Actors are never notified of their own change."""
    notifications = []
    rule = STATUS_NOTIFICATIONS.get(new_status)
    if rule is not None:
        role, title, template = rule
        recipient = _recipient(role, task, actor_id)
        if recipient != actor_id:
            notifications.append(NotificationIntent(
                user_id=recipient,
                title=title,
                content=template.format(title=task.title),
            ))

    step = task.current_step()
    if new_status == TaskStatus.PENDING_APPROVAL and step is not None and step.assignee_id != actor_id:
        notifications.append(NotificationIntent(
            user_id=step.assignee_id,
            title=f'Action required - task "{task.title}"',
            content=f'Task resubmitted; step {step.step} "{step.name}" awaits your decision',
        ))
    return notifications


def apply_status_change(
    task: Task,
    new_status: TaskStatus,
    actor_id: int,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TaskMutation:
    """Validate and apply a direct status change."""
    now = now or utc_now()
    new_status = TaskStatus(new_status)
    check_transition(task.status, new_status, actor_id, task)

    changes: dict[str, Any] = {"status": new_status}
    if new_status == TaskStatus.COMPLETED:
        changes.update(
            completed_at=now,
            progress=100,
            milestones=progress_tracker.refresh_milestones(task.milestones, now),
        )

    updated = task.model_copy(update=changes)
    updated = updated.with_audit(
        AuditAction.STATUS_CHANGED,
        actor_id,
        now,
        old_status=task.status.value,
        new_status=new_status.value,
        notes=notes,
    )
    return TaskMutation(task=updated, notifications=status_change_notifications(task, new_status, actor_id))


class TaskOrchestrator:
    """Entry point for every task mutation.

    Collaborators are injected: a ``TaskStore`` for snapshots and versioned
    writes, a ``NotificationSink`` for delivery, and an ``EmployeeDirectory``
    for display names.
    """

    def __init__(
        self,
        store: TaskStore,
        notifier: NotificationSink,
        directory: EmployeeDirectory,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.directory = directory
        self.config = config or get_config()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        actor: Actor,
        task_id: Optional[str],
        work: Callable[..., Awaitable[ResultT]],
        *args: Any,
    ) -> ResultT:
        with operation_context(operation, task_id=task_id, actor_id=actor.employee_id):
            with log_timing(operation, logger=logger):
                try:
                    return await work(*args)
                except ForbiddenError as e:
                    logger.warning("Permission denied", reason=e.reason, role=actor.role.value)
                    await self._record_denied(task_id, actor, operation, e)
                    raise
                except InternalError as e:
                    logger.error("Operation failed", error=e.message, error_code=e.code)
                    raise
                except TaskEngineError as e:
                    logger.info(
                        "Operation rejected",
                        error=e.message,
                        error_code=e.code,
                        error_details=e.details,
                    )
                    raise
                except Exception as e:
                    logger.exception("Unexpected error", error=str(e), error_type=type(e).__name__)
                    raise InternalError(f"{operation} failed: {e}") from e

    async def _record_denied(self, task_id: Optional[str], actor: Actor, operation: str, error: ForbiddenError) -> None:
        if task_id is None or not self.config.RECORD_DENIED_ACCESS:
            return
        entry = AuditEntry(
            action=AuditAction.ACCESS_DENIED,
            user_id=actor.employee_id,
            details={"operation": operation, "reason": error.reason},
        )
        try:
            await self.store.append_audit(task_id, entry)
        except Exception as e:
            logger.warning("Failed to record denied access", error=str(e), error_type=type(e).__name__)

    async def _load(self, task_id: str) -> Task:
        task = await self.store.find_by_id(task_id)
        if task is None:
            raise NotFoundError("Task not found", details={"task_id": task_id})
        return task

    def _authorize(self, task: Task, actor: Actor, action: PermissionAction) -> None:
        if not is_authorized(task, actor, action, admin_bypass=self.config.ADMIN_BYPASS_ENABLED):
            raise ForbiddenError(
                f"{action.value} not permitted for employee {actor.employee_id}",
                details={"permission": action.value, "status": task.status.value},
            )

    async def _commit(self, snapshot: Task, mutation: TaskMutation) -> Task:
        saved = await self.store.conditional_update(snapshot.task_id, snapshot.version, mutation.task)
        await self._dispatch(saved.task_id, mutation.notifications)
        return saved

    async def _dispatch(self, task_id: str, notifications: list[NotificationIntent]) -> None:
        for intent in notifications:
            try:
                await self.notifier.notify(intent.user_id, intent.title, intent.content, task_id=task_id)
            except Exception as e:
                logger.warning(
                    "Notification dispatch failed",
                    recipient_id=intent.user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    # ------------------------------------------------------------------
    # Task life cycle
    # ------------------------------------------------------------------

    async def assign_task(self, actor: Actor, assignee_id: int, payload: Payload) -> Task:
        """Create a task owned by ``actor`` and assigned to ``assignee_id``."""
        return await self._execute("assign_task", actor, None, self._assign_task, actor, assignee_id, payload)

    async def _assign_task(self, actor: Actor, assignee_id: int, payload: Payload) -> Task:
        data = _parse(TaskCreate, payload, "Invalid task payload")
        now = utc_now()

        task = Task(
            title=data.title,
            description=data.description,
            task_type=data.task_type,
            priority=data.priority,
            status=TaskStatus.DRAFT if data.from_template else TaskStatus.NEW,
            assigner_id=actor.employee_id,
            assignee_id=assignee_id,
            milestones=data.milestones,
            estimated_hours=data.estimated_hours,
            billing=data.billing,
            related_case_id=data.related_case_id,
            due_date=data.due_date,
            created_at=now,
            updated_at=now,
        )
        task = task.with_audit(AuditAction.CREATED, actor.employee_id, now, assignee_id=assignee_id)

        saved = await self.store.insert(task)
        logger.info("Task assigned", task_id=saved.task_id, assignee_id=assignee_id, status=saved.status.value)

        if saved.status == TaskStatus.NEW:
            await self._dispatch(saved.task_id, [NotificationIntent(
                user_id=assignee_id,
                title="New task",
                content=f"You have been assigned a new task: {saved.title}",
            )])
        return saved

    async def update_task_status(
        self,
        task_id: str,
        actor: Actor,
        status: Union[TaskStatus, str],
        notes: Optional[str] = None,
    ) -> Task:
        """Move a task along the transition table for its mode."""
        return await self._execute(
            "update_task_status", actor, task_id, self._update_task_status, task_id, actor, status, notes
        )

    async def _update_task_status(self, task_id: str, actor: Actor, status: Union[TaskStatus, str], notes: Optional[str]) -> Task:
        try:
            new_status = TaskStatus(status)
        except ValueError as e:
            raise TaskValidationError(f"Unknown status: {status}", field="status") from e

        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.STATUS_CHANGE)
        mutation = apply_status_change(task, new_status, actor.employee_id, notes=notes)
        saved = await self._commit(task, mutation)

        logger.info(
            "Task status changed",
            old_status=task.status.value,
            new_status=saved.status.value,
            notes=sanitize_notes(notes),
        )
        return saved

    # ------------------------------------------------------------------
    # Approval workflow
    # ------------------------------------------------------------------

    async def initialize_workflow(self, task_id: str, actor: Actor, payload: Payload) -> Task:
        """Attach an approval chain and send the task for approval."""
        return await self._execute(
            "initialize_workflow", actor, task_id, self._initialize_workflow, task_id, actor, payload
        )

    async def _initialize_workflow(self, task_id: str, actor: Actor, payload: Payload) -> Task:
        data = _parse(WorkflowCreate, payload, "Invalid workflow payload")
        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.EDIT)
        mutation = workflow_engine.initialize_workflow(
            task,
            data.steps,
            actor.employee_id,
            auto_advance=data.auto_advance,
            require_all_approvals=data.require_all_approvals,
        )
        return await self._commit(task, mutation)

    async def process_step_action(
        self,
        task_id: str,
        actor: Actor,
        step_number: int,
        action: Union[StepAction, str],
        notes: Optional[str] = None,
    ) -> Task:
        """Approve, reject or request changes on a workflow step."""
        return await self._execute(
            "process_step_action", actor, task_id, self._process_step_action, task_id, actor, step_number, action, notes
        )

    async def _process_step_action(
        self,
        task_id: str,
        actor: Actor,
        step_number: int,
        action: Union[StepAction, str],
        notes: Optional[str],
    ) -> Task:
        try:
            step_action = StepAction(action)
        except ValueError as e:
            raise TaskValidationError(f"Unknown step action: {action}", field="action") from e

        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.VIEW)
        mutation = workflow_engine.process_step_action(task, step_number, actor.employee_id, step_action, notes=notes)
        saved = await self._commit(task, mutation)

        logger.info(
            "Step action applied",
            step=step_number,
            step_action=step_action.value,
            notes=sanitize_notes(notes),
            new_status=saved.status.value,
        )
        return saved

    async def add_step_documents(self, task_id: str, actor: Actor, step_number: int, documents: list[Payload]) -> Task:
        """Attach review documents to a workflow step."""
        return await self._execute(
            "add_step_documents", actor, task_id, self._add_step_documents, task_id, actor, step_number, documents
        )

    async def _add_step_documents(self, task_id: str, actor: Actor, step_number: int, documents: list[Payload]) -> Task:
        attachments = [_parse(Attachment, document, "Invalid document") for document in documents or []]
        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.COMMENT)
        mutation = workflow_engine.add_step_documents(task, step_number, actor.employee_id, attachments)
        return await self._commit(task, mutation)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def update_progress(self, task_id: str, actor: Actor, progress: int, notes: Optional[str] = None) -> Task:
        """Record a progress percentage."""
        return await self._execute(
            "update_progress", actor, task_id, self._update_progress, task_id, actor, progress, notes
        )

    async def _update_progress(self, task_id: str, actor: Actor, progress: int, notes: Optional[str]) -> Task:
        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.EDIT)
        mutation = progress_tracker.update_progress(task, progress, actor.employee_id, notes=notes, config=self.config)
        return await self._commit(task, mutation)

    async def estimate_completion(self, task_id: str, actor: Actor) -> Optional[datetime]:
        """Projected completion date from the recorded progress history."""
        return await self._execute("estimate_completion", actor, task_id, self._estimate_completion, task_id, actor)

    async def _estimate_completion(self, task_id: str, actor: Actor) -> Optional[datetime]:
        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.VIEW)
        return progress_tracker.estimate_completion(task)

    # ------------------------------------------------------------------
    # Time & billing
    # ------------------------------------------------------------------

    async def add_time_entry(self, task_id: str, actor: Actor, payload: Payload) -> Task:
        """Log time worked by ``actor``."""
        return await self._execute("add_time_entry", actor, task_id, self._add_time_entry, task_id, actor, payload)

    async def _add_time_entry(self, task_id: str, actor: Actor, payload: Payload) -> Task:
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        # Time is always logged by the acting employee
        entry = _parse(TimeEntry, {**payload, "user_id": actor.employee_id}, "Invalid time entry")

        task = await self._load(task_id)
        mutation = time_ledger.add_time_entry(task, entry)
        saved = await self._commit(task, mutation)

        logger.info("Time logged", hours=str(entry.hours), billable=entry.billable, actual_hours=str(saved.actual_hours))
        return saved

    async def update_billing_info(self, task_id: str, actor: Actor, payload: Payload) -> Task:
        """Replace the billing block of a task."""
        return await self._execute(
            "update_billing_info", actor, task_id, self._update_billing_info, task_id, actor, payload
        )

    async def _update_billing_info(self, task_id: str, actor: Actor, payload: Payload) -> Task:
        billing = _parse(BillingInfo, payload, "Invalid billing information")
        task = await self._load(task_id)
        mutation = time_ledger.update_billing_info(task, actor.employee_id, billing)
        return await self._commit(task, mutation)

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    async def create_recurring_tasks(
        self,
        task_id: str,
        actor: Actor,
        payload: Payload,
        start: Optional[date] = None,
    ) -> list[Task]:
        """Expand a recurrence pattern into future instances of a task."""
        return await self._execute(
            "create_recurring_tasks", actor, task_id, self._create_recurring_tasks, task_id, actor, payload, start
        )

    async def _create_recurring_tasks(self, task_id: str, actor: Actor, payload: Payload, start: Optional[date]) -> list[Task]:
        pattern = _parse(RecurrencePattern, payload, "Invalid recurrence pattern")
        if not pattern.enabled:
            raise TaskValidationError("Recurrence pattern is disabled", field="enabled")
        recurrence.validate_pattern(pattern)

        source = await self._load(task_id)
        self._authorize(source, actor, PermissionAction.ASSIGN)

        now = utc_now()
        dates = recurrence.calculate_recurrence_dates(pattern, start=start or now.date(), config=self.config)
        instances = [recurrence.create_recurring_instance(source, due_date, now=now) for due_date in dates]

        recorded = pattern.model_copy(update={"related_tasks": [instance.task_id for instance in instances]})
        updated = source.model_copy(update={"recurrence": recorded})
        updated = updated.with_audit(
            AuditAction.RECURRENCE_CREATED,
            actor.employee_id,
            now,
            pattern=pattern.pattern.value,
            interval=pattern.interval,
            instance_count=len(instances),
        )

        # The source write goes first so a concurrent expansion conflicts before any instance exists
        saved = await self.store.conditional_update(source.task_id, source.version, updated)

        created: list[Task] = []
        try:
            for instance in instances:
                created.append(await self.store.insert(instance))
        except Exception:
            await self._repair_related_tasks(saved, actor, created)
            raise

        logger.info(
            "Recurring tasks created",
            instance_count=len(created),
            first_due_date=dates[0].isoformat() if dates else None,
            last_due_date=dates[-1].isoformat() if dates else None,
        )
        if created:
            await self._dispatch(saved.task_id, [NotificationIntent(
                user_id=source.assignee_id,
                title="Recurring tasks scheduled",
                content=f'{len(created)} recurring instance(s) of "{source.title}" were created',
            )])
        return created

    async def _repair_related_tasks(self, saved: Task, actor: Actor, created: list[Task]) -> None:
        """Point the source at the instances that were actually stored."""
        recorded = saved.recurrence.model_copy(update={"related_tasks": [task.task_id for task in created]})
        repaired = saved.model_copy(update={"recurrence": recorded})
        repaired = repaired.with_audit(
            AuditAction.UPDATED,
            actor.employee_id,
            utc_now(),
            field="recurrence.related_tasks",
            instance_count=len(created),
        )
        try:
            await self.store.conditional_update(saved.task_id, saved.version, repaired)
        except Exception as e:
            logger.error(
                "Failed to repair recurring instance list",
                created_count=len(created),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def update_recurring_instances(
        self,
        task_id: str,
        actor: Actor,
        payload: Payload,
        update_future: bool = False,
    ) -> list[Task]:
        """Push title, description, priority or billing changes to future recurring instances."""
        return await self._execute(
            "update_recurring_instances",
            actor,
            task_id,
            self._update_recurring_instances,
            task_id,
            actor,
            payload,
            update_future,
        )

    async def _update_recurring_instances(
        self,
        task_id: str,
        actor: Actor,
        payload: Payload,
        update_future: bool,
    ) -> list[Task]:
        update = _parse(RecurringTaskUpdate, payload, "Invalid recurring task update")
        changes = {
            field: getattr(update, field)
            for field in update.model_fields_set
            if getattr(update, field) is not None
        }

        source = await self._load(task_id)
        self._authorize(source, actor, PermissionAction.ASSIGN)
        if source.recurrence is None or not source.recurrence.enabled:
            raise TaskValidationError("Task is not recurring", field="recurrence")
        if not update_future or not changes:
            return []

        now = utc_now()
        today = now.date()
        instances = await self.store.find_many(source.recurrence.related_tasks)

        updated_instances = []
        for instance in instances:
            if instance.is_terminal or instance.due_date is None or instance.due_date <= today:
                continue
            updated = instance.model_copy(update=changes)
            updated = updated.with_audit(
                AuditAction.UPDATED,
                actor.employee_id,
                now,
                fields=sorted(changes),
                source_task_id=source.task_id,
            )
            updated_instances.append(await self._commit(instance, TaskMutation(task=updated)))

        logger.info("Recurring instances updated", instance_count=len(updated_instances), fields=sorted(changes))
        return updated_instances

    # ------------------------------------------------------------------
    # Comments & views
    # ------------------------------------------------------------------

    async def add_comment(
        self,
        task_id: str,
        actor: Actor,
        content: str,
        attachments: Optional[list[Payload]] = None,
    ) -> Task:
        """Add a comment and let the other party know."""
        return await self._execute(
            "add_comment", actor, task_id, self._add_comment, task_id, actor, content, attachments
        )

    async def _add_comment(self, task_id: str, actor: Actor, content: str, attachments: Optional[list[Payload]]) -> Task:
        if not content or not content.strip():
            raise TaskValidationError("Comment content is required", field="content")
        files = [_parse(Attachment, item, "Invalid attachment") for item in attachments or []]

        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.COMMENT)

        now = utc_now()
        comment = Comment(author_id=actor.employee_id, content=content.strip(), timestamp=now, attachments=files)
        updated = task.model_copy(update={"comments": [*task.comments, comment]})
        updated = updated.with_audit(
            AuditAction.COMMENT_ADDED,
            actor.employee_id,
            now,
            attachment_count=len(files),
        )

        recipients = {task.assignee_id, task.assigner_id} - {actor.employee_id}
        notifications = [
            NotificationIntent(
                user_id=recipient,
                title=f'New comment - task "{task.title}"',
                content=comment.content,
            )
            for recipient in sorted(recipients)
        ]
        return await self._commit(task, TaskMutation(task=updated, notifications=notifications))

    async def get_task(self, task_id: str, actor: Actor) -> TaskView:
        """Task snapshot with display names and computed billing."""
        return await self._execute("get_task", actor, task_id, self._get_task, task_id, actor)

    async def _get_task(self, task_id: str, actor: Actor) -> TaskView:
        task = await self._load(task_id)
        self._authorize(task, actor, PermissionAction.VIEW)

        employee_ids = {task.assignee_id, task.assigner_id}
        if task.workflow is not None:
            employee_ids |= task.workflow.assignee_ids()
        employee_ids |= {comment.author_id for comment in task.comments}
        names = await self.directory.resolve_names(employee_ids)

        summary = time_ledger.summarize_time(task)
        return TaskView(
            task=task,
            assignee_name=names.get(task.assignee_id),
            assigner_name=names.get(task.assigner_id),
            employee_names=names,
            billing_amount=summary.amount,
            time_summary=summary,
        )


def create_orchestrator(config: Optional[EngineConfig] = None) -> TaskOrchestrator:
    """Wire the orchestrator to the Supabase-backed collaborators."""
    setup_logging()
    config = config or get_config()
    return TaskOrchestrator(
        SupabaseTaskStore(config),
        SupabaseNotificationSink(config),
        SupabaseEmployeeDirectory(config),
        config=config,
    )
