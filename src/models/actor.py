"""Actor model - the employee performing an operation."""

from enum import Enum
from pydantic import BaseModel, Field


class Role(str, Enum):
    """Capability the acting employee carries into permission checks."""
    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


class Actor(BaseModel):
    """Acting employee identity."""
    employee_id: int = Field(..., description="Numeric employee ID")
    role: Role = Field(default=Role.EMPLOYEE, description="Role: employee, manager, admin")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
