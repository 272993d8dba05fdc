"""Time entry and billing models."""

from enum import Enum
from typing import Optional
from datetime import date
from decimal import Decimal
from pydantic import BaseModel, Field


class RateType(str, Enum):
    """How a task is billed."""
    HOURLY = "hourly"
    FIXED = "fixed"
    NON_BILLABLE = "non-billable"


class Currency(str, Enum):
    """Billing currencies."""
    USD = "USD"
    AED = "AED"
    SAR = "SAR"


class TimeEntry(BaseModel):
    """Immutable record of time spent on a task."""
    entry_date: date = Field(..., description="Day the work was done")
    hours: Decimal = Field(..., gt=0, description="Hours worked (> 0)")
    description: str = Field(default="", description="What was done")
    billable: bool = Field(default=True, description="Counts toward billing")
    user_id: int = Field(..., description="Employee who logged the time")


class BillingInfo(BaseModel):
    """Billing block of a task. The amount is always computed, never stored."""
    billable: bool = Field(default=True)
    rate_type: RateType = Field(..., description="hourly, fixed or non-billable")
    rate: Optional[Decimal] = Field(None, ge=0, description="Hourly rate or fixed fee")
    currency: Optional[Currency] = Field(None, description="Billing currency")


class TimeSummary(BaseModel):
    """Per-task time report."""
    task_id: str
    total_hours: Decimal
    billable_hours: Decimal
    non_billable_hours: Decimal
    entry_count: int
    amount: Decimal
    currency: Optional[Currency] = None
