"""Error handling utilities."""

from typing import Any, Optional


class TaskEngineError(Exception):
    """Base exception for the task workflow engine."""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        """Render the error the way callers (e.g. an HTTP layer) surface it."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"status": "error", "error": error}


class NotFoundError(TaskEngineError):
    """Task, step or related entity does not exist."""
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(TaskEngineError):
    """Actor is not allowed to perform the action.

    ``reason`` names the check that failed. It is kept for logs and never
    rendered in ``to_response``.
    """
    status_code = 403
    code = "PERMISSION_DENIED"
    public_message = "You are not allowed to perform this action"

    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        super().__init__(reason, details)
        self.reason = reason

    def to_response(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error": {"code": self.code, "message": self.public_message},
        }


class InvalidTransitionError(TaskEngineError):
    """Requested status change is not in the transition table."""
    status_code = 400
    code = "INVALID_TRANSITION"


class InvalidStepActionError(TaskEngineError):
    """Workflow step action is not legal in the current workflow state."""
    status_code = 400
    code = "INVALID_STEP_ACTION"


class TaskValidationError(TaskEngineError):
    """Malformed payload."""
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class ConflictError(TaskEngineError):
    """Task was modified concurrently; the write was not applied."""
    status_code = 409
    code = "CONFLICT"


class InternalError(TaskEngineError):
    """Unexpected collaborator failure."""
    status_code = 500
    code = "INTERNAL_ERROR"

    def to_response(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error": {"code": self.code, "message": "Internal server error"},
        }


class StoreError(InternalError):
    """Supabase operation error."""
    pass


def validation_error_from_pydantic(exc: Any, message: str = "Invalid payload") -> TaskValidationError:
    """Convert a pydantic ``ValidationError`` into a field-level ``TaskValidationError``."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    field = errors[0]["field"] if errors else None
    return TaskValidationError(message, field=field, details={"errors": errors})
