"""Notification models."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationIntent(BaseModel):
    """Message the engine wants delivered once a mutation is persisted."""
    user_id: int = Field(..., description="Recipient employee ID")
    title: str = Field(..., description="Notification title")
    content: str = Field(..., description="Notification body")


class Notification(BaseModel):
    """Notification row as stored in the notifications table."""
    employee_id: int = Field(..., description="Recipient employee ID")
    title: str
    content: str
    type: str = Field(default="TASK", description="CASE, TASK, DOCUMENT, DEADLINE, HR, SYSTEM")
    priority: NotificationPriority = Field(default=NotificationPriority.HIGH)
    status: str = Field(default="unread", description="unread, read, archived")
    related_to: Optional[dict[str, str]] = Field(None, description="{type, id} of the related entity")
