"""Auth / user Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leave_tracker.common.constants import UserRole


class UserOut(BaseModel):
    """User profile with raw entitlement counters."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: UserRole
    is_active: bool = True
    annual_leave_balance: Optional[Decimal] = None
    sick_leave_balance: Optional[Decimal] = None
    toil_balance: Optional[Decimal] = None
    created_at: datetime


class UserBrief(BaseModel):
    """Minimal user info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: Optional[str] = None


class UserCreate(BaseModel):
    """Admin payload for provisioning an account."""

    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(None, max_length=255)
    role: UserRole = UserRole.user
    annual_leave_balance: Optional[Decimal] = Field(None, ge=0)
    sick_leave_balance: Optional[Decimal] = None
    toil_balance: Optional[Decimal] = Field(None, ge=0)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class BalanceCorrection(BaseModel):
    """Admin correction of entitlement counters; omitted fields are untouched."""

    annual_leave_balance: Optional[Decimal] = Field(None, ge=0)
    sick_leave_balance: Optional[Decimal] = None
    toil_balance: Optional[Decimal] = Field(None, ge=0)
    reason: str = Field(..., min_length=3, max_length=500)

    @model_validator(mode="after")
    def at_least_one_counter(self) -> "BalanceCorrection":
        if (
            self.annual_leave_balance is None
            and self.sick_leave_balance is None
            and self.toil_balance is None
        ):
            raise ValueError("Provide at least one balance to set")
        return self
