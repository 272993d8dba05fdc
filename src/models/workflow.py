"""Approval workflow models."""

from enum import Enum
from typing import Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class StepType(str, Enum):
    """Kind of work a workflow step asks of its assignee."""
    REVIEW = "review"
    APPROVAL = "approval"
    NOTIFICATION = "notification"


class StepStatus(str, Enum):
    """Per-step disposition."""
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class StepAction(str, Enum):
    """Action an assignee takes on a workflow step."""
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request-changes"


class WorkflowStepInput(BaseModel):
    """Step definition supplied when a workflow is initialized."""
    name: str = Field(..., min_length=1, description="Step name")
    type: StepType = Field(default=StepType.APPROVAL, description="Step type")
    assignee_id: int = Field(..., description="Employee who acts on this step")


class WorkflowStep(BaseModel):
    """One sequential stage of an approval chain."""
    step: int = Field(..., ge=1, description="1-based position in the sequence")
    name: str = Field(..., description="Step name")
    type: StepType = Field(..., description="Step type")
    assignee_id: int = Field(..., description="Employee who acts on this step")
    status: StepStatus = Field(default=StepStatus.PENDING, description="Step status")
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class Workflow(BaseModel):
    """Sequential approval chain attached to a task."""
    current_step: int = Field(default=1, ge=1)
    total_steps: int = Field(..., ge=1)
    sequence: list[WorkflowStep] = Field(..., min_length=1)
    auto_advance: bool = True
    require_all_approvals: bool = True

    @model_validator(mode="after")
    def _check_sequence(self) -> "Workflow":
        if len(self.sequence) != self.total_steps:
            raise ValueError("sequence length must equal total_steps")
        if self.current_step > self.total_steps:
            raise ValueError("current_step must not exceed total_steps")
        for position, step in enumerate(self.sequence, start=1):
            if step.step != position:
                raise ValueError(f"step numbers must be contiguous from 1 (got {step.step} at position {position})")
        return self

    def get_step(self, step_number: int) -> Optional[WorkflowStep]:
        """Return the step with the given 1-based number, or None when out of range."""
        if 1 <= step_number <= self.total_steps:
            return self.sequence[step_number - 1]
        return None

    @property
    def current(self) -> WorkflowStep:
        return self.sequence[self.current_step - 1]

    def update_step(self, step_number: int, **changes: Any) -> "Workflow":
        """Return a new workflow whose ``step_number`` step carries ``changes``.

        The sequence is rebuilt; the receiver is left untouched.
        """
        if self.get_step(step_number) is None:
            raise IndexError(f"Workflow step {step_number} out of range")
        sequence = [
            step.model_copy(update=changes) if step.step == step_number else step
            for step in self.sequence
        ]
        return self.model_copy(update={"sequence": sequence})

    def all_completed(self) -> bool:
        return all(step.status == StepStatus.COMPLETED for step in self.sequence)

    def assignee_ids(self) -> set[int]:
        return {step.assignee_id for step in self.sequence}

    @classmethod
    def from_inputs(
        cls,
        steps: list[WorkflowStepInput],
        auto_advance: bool = True,
        require_all_approvals: bool = True,
    ) -> "Workflow":
        """Build the initial workflow: every step pending, pointer on step 1."""
        sequence = [
            WorkflowStep(step=index, name=item.name, type=item.type, assignee_id=item.assignee_id)
            for index, item in enumerate(steps, start=1)
        ]
        return cls(
            current_step=1,
            total_steps=len(sequence),
            sequence=sequence,
            auto_advance=auto_advance,
            require_all_approvals=require_all_approvals,
        )


class WorkflowCreate(BaseModel):
    """Payload for attaching an approval chain to a task."""
    steps: list[WorkflowStepInput] = Field(default_factory=list, description="Ordered step definitions")
    auto_advance: bool = Field(default=True, description="Move the pointer to the next step on approval")
    require_all_approvals: bool = Field(default=True, description="Every step must approve before the task does")
