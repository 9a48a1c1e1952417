"""TOIL Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_tracker.common.constants import MAX_REJECTION_REASON_LENGTH, ToilScenario

MIN_TOIL_REASON_LENGTH = 10


class ToilCalculateRequest(BaseModel):
    """Preview body; every field optional so partial forms can be priced."""

    scenario: Optional[ToilScenario] = None
    travel_date: Optional[date] = None
    return_date: Optional[date] = None
    return_time: Optional[str] = Field(None, max_length=5)


class ToilCalculateOut(BaseModel):
    hours: Optional[int] = None
    display_text: str


class ScenarioOut(BaseModel):
    scenario: ToilScenario
    label: str
    description: str
    help_text: str
    contract_ref: str
    requires_return_date: bool
    requires_return_time: bool


class ToilEntryCreate(BaseModel):
    """Employee claim for TOIL earned on a trip."""

    scenario: ToilScenario
    travel_date: date
    return_date: Optional[date] = None
    return_time: Optional[str] = Field(None, max_length=5)
    reason: str = Field(
        ..., min_length=MIN_TOIL_REASON_LENGTH, max_length=1000,
        description="Please provide details (min 10 characters)",
    )

    @model_validator(mode="after")
    def check_return_fields(self) -> "ToilEntryCreate":
        overnight = (ToilScenario.overnight_day_off, ToilScenario.overnight_working_day)
        if self.scenario in overnight and self.return_date is None:
            raise ValueError("Return date is required for overnight travel")
        if self.return_date is not None and self.return_date < self.travel_date:
            raise ValueError("Return date cannot be before the travel date")
        return self


class ToilRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=MAX_REJECTION_REASON_LENGTH)


class ToilAdjustmentCreate(BaseModel):
    """Admin grant of TOIL hours outside the scenario table."""

    user_id: uuid.UUID
    hours: Decimal = Field(..., gt=0, le=100)
    reason: str = Field(..., min_length=3, max_length=500)
    effective_date: Optional[date] = None


class ToilEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    travel_date: date
    scenario: Optional[ToilScenario] = None
    return_date: Optional[date] = None
    return_time: Optional[str] = None
    hours: Decimal
    reason: Optional[str] = None
    approved: bool
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    previous_balance: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None
    adjustment_reason: Optional[str] = None
    created_at: datetime
