"""Task models."""

from enum import Enum
from typing import Optional, Any
from datetime import date, datetime, timezone
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from ulid import ULID

from src.models.billing import BillingInfo, TimeEntry, TimeSummary
from src.models.notification import NotificationIntent
from src.models.recurrence import RecurrencePattern
from src.models.workflow import Workflow, WorkflowStep


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_task_id() -> str:
    """Generate a text-based task ID (ULID format)."""
    return str(ULID())


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TaskStatus(str, Enum):
    """Task life cycle states."""
    DRAFT = "draft"
    NEW = "new"
    IN_PROGRESS = "in-progress"
    PENDING_APPROVAL = "pending-approval"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class TaskMode(str, Enum):
    """Selects the transition table: tasks with an approval chain vs. without."""
    SIMPLE = "simple"
    WORKFLOW = "workflow"


class TaskType(str, Enum):
    PERSONAL = "personal"
    ASSIGNED = "assigned"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class AuditAction(str, Enum):
    """Actions recorded in a task's audit trail."""
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status-changed"
    WORKFLOW_INITIALIZED = "workflow-initialized"
    WORKFLOW_ADVANCED = "workflow-advanced"
    FILE_ATTACHED = "file-attached"
    COMMENT_ADDED = "comment-added"
    PROGRESS_UPDATED = "progress-updated"
    TIME_TRACKED = "time-tracked"
    BILLING_UPDATED = "billing-updated"
    RECURRENCE_CREATED = "recurrence-created"
    ACCESS_DENIED = "access-denied"


class Milestone(BaseModel):
    """Checkpoint inside a task. ``overdue`` is derived from ``due_date``."""
    title: str
    due_date: datetime
    status: MilestoneStatus = MilestoneStatus.PENDING

    @field_validator("due_date")
    @classmethod
    def _utc_due_date(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Attachment(BaseModel):
    file_name: str
    file_url: str
    file_type: str = Field(default="application/octet-stream")
    file_size: int = Field(default=0, ge=0)


class Comment(BaseModel):
    """Comment on a task, optionally tied to a workflow step."""
    author_id: int
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    attachments: list[Attachment] = Field(default_factory=list)
    workflow_step: Optional[int] = Field(None, description="Workflow step this comment belongs to")


class AuditEntry(BaseModel):
    """One append-only record of a state-changing action."""
    action: AuditAction
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: int
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class TaskCreate(BaseModel):
    """Payload for assigning a new task."""
    title: str = Field(..., min_length=1, description="Task title")
    description: str = Field(default="", description="Task description")
    task_type: TaskType = Field(default=TaskType.ASSIGNED)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: Optional[date] = None
    related_case_id: Optional[str] = None
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    milestones: list[Milestone] = Field(default_factory=list)
    billing: Optional[BillingInfo] = None
    from_template: bool = Field(default=False, description="Template-originated tasks start as draft")


class Task(BaseModel):
    """Task aggregate."""
    task_id: str = Field(default_factory=generate_task_id, description="Task ID (text)")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Task description")
    task_type: TaskType = Field(default=TaskType.ASSIGNED)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    status: TaskStatus = Field(default=TaskStatus.NEW, description="Task status")
    assigner_id: int = Field(..., description="Employee who created/owns the task")
    assignee_id: int = Field(..., description="Employee who executes the task")
    progress: int = Field(default=0, ge=0, le=100, description="Progress percentage")
    milestones: list[Milestone] = Field(default_factory=list)
    time_entries: list[TimeEntry] = Field(default_factory=list)
    actual_hours: Decimal = Field(default=Decimal("0"), ge=0, description="Cached sum of time entry hours")
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    billing: Optional[BillingInfo] = None
    workflow: Optional[Workflow] = None
    comments: list[Comment] = Field(default_factory=list)
    audit_trail: list[AuditEntry] = Field(default_factory=list)
    recurrence: Optional[RecurrencePattern] = None
    parent_task_id: Optional[str] = Field(None, description="Source task of a recurring instance")
    related_case_id: Optional[str] = None
    due_date: Optional[date] = Field(None, description="Due date")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")

    @property
    def mode(self) -> TaskMode:
        return TaskMode.WORKFLOW if self.workflow is not None else TaskMode.SIMPLE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def current_step(self) -> Optional[WorkflowStep]:
        """Step the workflow pointer is on, or None for tasks without a workflow."""
        if self.workflow is None:
            return None
        return self.workflow.current

    def is_participant(self, employee_id: int) -> bool:
        """True for the assignee, the assigner and any workflow step assignee."""
        if employee_id in (self.assignee_id, self.assigner_id):
            return True
        return self.workflow is not None and employee_id in self.workflow.assignee_ids()

    def with_audit(self, action: AuditAction, user_id: int, now: datetime, /, **details: Any) -> "Task":
        """Return a copy with one more audit entry and a refreshed ``updated_at``."""
        entry = AuditEntry(action=action, timestamp=now, user_id=user_id, details=details)
        return self.model_copy(update={
            "audit_trail": [*self.audit_trail, entry],
            "updated_at": now,
        })


class TaskMutation(BaseModel):
    """Result of a pure decision: the new aggregate and what to tell whom."""
    task: Task
    notifications: list[NotificationIntent] = Field(default_factory=list)


class RecurringTaskUpdate(BaseModel):
    """Fields that may be pushed from a recurring source task to its future instances."""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    billing: Optional[BillingInfo] = None


class TaskView(BaseModel):
    """Task snapshot enriched for display."""
    task: Task
    assignee_name: Optional[str] = None
    assigner_name: Optional[str] = None
    employee_names: dict[int, Optional[str]] = Field(
        default_factory=dict,
        description="Names of step assignees and comment authors, keyed by employee ID",
    )
    billing_amount: Decimal = Field(default=Decimal("0"))
    time_summary: TimeSummary
