"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leave_tracker.auth.schemas import UserBrief
from leave_tracker.common.constants import (
    MAX_REJECTION_REASON_LENGTH,
    MIN_BULK_REJECTION_REASON_LENGTH,
    LeaveStatus,
    LeaveType,
    ToilScenario,
)
from leave_tracker.common.pagination import PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


class BalanceOut(BaseModel):
    total: Decimal
    used: Decimal
    remaining: Decimal


class PendingOut(BaseModel):
    annual: Decimal
    toil: Decimal
    sick: Decimal
    total: Decimal


class LegacyBalanceOut(BaseModel):
    total_allowance: Decimal
    days_used: Decimal
    remaining: Decimal
    approved_leaves: int


class LeaveBalancesOut(BaseModel):
    """Per-type balances; ``toil`` / ``sick`` are omitted while disabled."""

    year: int
    annual: BalanceOut
    toil: Optional[BalanceOut] = None
    sick: Optional[BalanceOut] = None
    pending: PendingOut
    legacy: LegacyBalanceOut


class EmployeeBalanceOut(BaseModel):
    user: UserBrief
    balances: LeaveBalancesOut


class EmployeeBalancesOut(BaseModel):
    """Admin overview: one entry per active user, ordered by name."""

    year: int
    employees: list[EmployeeBalanceOut]


class LeaveTypesOut(BaseModel):
    types: list[LeaveType]
    multi_leave_type_enabled: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request.

    ``type`` may be omitted by older clients and is then treated as annual.
    TOIL requests carry either ``hours`` or the scenario fields the hours
    are computed from.
    """

    type: Optional[LeaveType] = None
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    comments: Optional[str] = Field(None, max_length=1000)

    hours: Optional[Decimal] = Field(None, gt=0, le=100)
    scenario: Optional[ToilScenario] = None
    travel_date: Optional[date] = None
    return_date: Optional[date] = None
    return_time: Optional[str] = Field(None, max_length=5)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Actions
# ═════════════════════════════════════════════════════════════════════


class LeaveRejectRequest(BaseModel):
    reason: str = Field(..., max_length=MAX_REJECTION_REASON_LENGTH)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("A rejection reason is required")
        return v


class BulkRejectRequest(BaseModel):
    reason: str = Field(..., max_length=MAX_REJECTION_REASON_LENGTH)

    @field_validator("reason")
    @classmethod
    def reason_long_enough(cls, v: str) -> str:
        v = v.strip()
        if len(v) < MIN_BULK_REJECTION_REASON_LENGTH:
            raise ValueError(
                "Rejection reason must be at least "
                f"{MIN_BULK_REJECTION_REASON_LENGTH} characters"
            )
        return v


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    type: LeaveType = Field(validation_alias="effective_type")
    start_date: date
    end_date: date
    hours: Optional[Decimal] = None
    status: LeaveStatus
    comments: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    decision_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    # Filled by the service
    working_days: Optional[int] = None
    requester: Optional[UserBrief] = None


class LeaveRequestListOut(BaseModel):
    data: list[LeaveRequestOut]
    meta: PaginationMeta


class BulkDecisionOut(BaseModel):
    """Result of a bulk approve/reject; email counts are best-effort."""

    processed: int
    emails_sent: int
    email_errors: list[str] = []


# ═════════════════════════════════════════════════════════════════════
# Team calendar
# ═════════════════════════════════════════════════════════════════════


class LeaveCalendarEntry(BaseModel):
    request_id: uuid.UUID
    user_id: uuid.UUID
    user_name: str
    type: LeaveType
    status: LeaveStatus
    start_date: date
    end_date: date


class LeaveCalendarOut(BaseModel):
    start: date
    end: date
    entries: list[LeaveCalendarEntry]
