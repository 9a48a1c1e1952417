"""TOIL ORM models: ToilEntry (accrual claims)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_tracker.common.constants import ToilScenario
from leave_tracker.database import Base

if TYPE_CHECKING:
    from leave_tracker.auth.models import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToilEntry(Base):
    __tablename__ = "toil_entries"
    __table_args__ = (
        sa.Index("ix_toil_entries_user_approved", "user_id", "approved"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    travel_date: Mapped[date] = mapped_column("date", sa.Date, nullable=False)
    # NULL for manual adjustments granted by an admin
    scenario: Mapped[Optional[ToilScenario]] = mapped_column(
        sa.Enum(ToilScenario, name="toil_scenario", create_type=False)
    )
    return_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    return_time: Mapped[Optional[str]] = mapped_column(sa.String(5))
    hours: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    approved: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE")
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    previous_balance: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    new_balance: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    adjustment_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    user: Mapped[User] = relationship(
        back_populates="toil_entries", foreign_keys=[user_id]
    )

    @property
    def is_rejected(self) -> bool:
        """Decided without approval: an approver is stamped but no credit given."""
        return not self.approved and self.approved_by is not None

    @property
    def is_pending(self) -> bool:
        return not self.approved and self.approved_by is None
