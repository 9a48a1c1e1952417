"""Auth ORM models: User with role and leave balance counters."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_tracker.common.constants import (
    DEFAULT_ANNUAL_LEAVE,
    DEFAULT_SICK_LEAVE,
    DEFAULT_TOIL_BALANCE,
    UserRole,
)
from leave_tracker.database import Base

if TYPE_CHECKING:
    from leave_tracker.leave.models import LeaveRequest
    from leave_tracker.toil.models import ToilEntry


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role", create_type=False),
        nullable=False,
        default=UserRole.user,
        server_default="user",
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )

    # Entitlement counters. Usage is derived from request history.
    annual_leave_balance: Mapped[Optional[Decimal]] = mapped_column(
        sa.Numeric(6, 2), default=DEFAULT_ANNUAL_LEAVE, server_default="32"
    )
    sick_leave_balance: Mapped[Optional[Decimal]] = mapped_column(
        sa.Numeric(6, 2), default=DEFAULT_SICK_LEAVE, server_default="3"
    )
    toil_balance: Mapped[Optional[Decimal]] = mapped_column(
        sa.Numeric(6, 2), default=DEFAULT_TOIL_BALANCE, server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="user", foreign_keys="LeaveRequest.user_id"
    )
    toil_entries: Mapped[list[ToilEntry]] = relationship(
        back_populates="user", foreign_keys="ToilEntry.user_id"
    )

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"
