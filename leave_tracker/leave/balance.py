"""Leave balance aggregation.

A user's counters are their *entitlement*; "used" is always derived from
APPROVED requests that start within the year and is never written back to
the counters. PENDING requests are reported separately so they are not
counted twice.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from leave_tracker.common.constants import (
    DEFAULT_ANNUAL_LEAVE,
    DEFAULT_SICK_LEAVE,
    DEFAULT_TOIL_BALANCE,
    LeaveStatus,
    LeaveType,
)
from leave_tracker.common.features import FeatureFlags
from leave_tracker.leave.working_days import working_days

_ZERO = Decimal("0")


def format_amount(value: Decimal) -> str:
    """Render 27, 2.5 or -1 without trailing zeros or exponent."""
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


# ── Inputs ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Entitlement:
    """Balance counters as stored on the user; ``None`` means unset."""

    annual: Optional[Decimal] = None
    sick: Optional[Decimal] = None
    toil: Optional[Decimal] = None

    @classmethod
    def from_user(cls, user: Any) -> "Entitlement":
        return cls(
            annual=user.annual_leave_balance,
            sick=user.sick_leave_balance,
            toil=user.toil_balance,
        )


@dataclass(frozen=True)
class LeaveRecord:
    """Plain-data view of a stored request, detached from the ORM.

    Rows written before leave types existed carry no type; they are
    mapped to ANNUAL here and nowhere else.
    """

    user_id: Optional[uuid.UUID]
    type: LeaveType
    start_date: date
    end_date: date
    status: LeaveStatus
    hours: Optional[Decimal] = None
    user_email: Optional[str] = None
    user_name: Optional[str] = None

    @classmethod
    def from_model(cls, request: Any, *, with_user: bool = False) -> "LeaveRecord":
        """Map an ORM row; pass ``with_user`` only if ``user`` was eager-loaded."""
        user = request.user if with_user else None
        return cls(
            user_id=request.user_id,
            type=LeaveType(request.type) if request.type else LeaveType.annual,
            start_date=request.start_date,
            end_date=request.end_date,
            status=LeaveStatus(request.status),
            hours=request.hours,
            user_email=user.email if user is not None else None,
            user_name=user.name if user is not None else None,
        )

    @property
    def cost(self) -> Decimal:
        """Days for ANNUAL/SICK, cached hours for TOIL."""
        if self.type == LeaveType.toil:
            return Decimal(self.hours) if self.hours is not None else _ZERO
        return Decimal(working_days(self.start_date, self.end_date))


# ── Outputs ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BalanceBreakdown:
    total: Decimal
    used: Decimal

    @property
    def remaining(self) -> Decimal:
        return self.total - self.used

    def as_dict(self) -> dict[str, Decimal]:
        return {"total": self.total, "used": self.used, "remaining": self.remaining}


@dataclass(frozen=True)
class PendingBreakdown:
    annual: Decimal = _ZERO
    toil: Decimal = _ZERO
    sick: Decimal = _ZERO

    @property
    def total(self) -> Decimal:
        """Pending days (annual + sick); TOIL hours are not mixed in."""
        return self.annual + self.sick


@dataclass(frozen=True)
class LeaveBalances:
    annual: BalanceBreakdown
    toil: Optional[BalanceBreakdown] = None
    sick: Optional[BalanceBreakdown] = None
    pending: PendingBreakdown = field(default_factory=PendingBreakdown)

    def for_type(self, leave_type: LeaveType) -> Optional[BalanceBreakdown]:
        return getattr(self, leave_type.value)

    def legacy_summary(self) -> dict[str, Any]:
        """Single-type summary kept for older dashboard clients."""
        return {
            "total_allowance": self.annual.total,
            "days_used": self.annual.used,
            "remaining": self.annual.remaining,
        }


# ── Calculator ──────────────────────────────────────────────────────

class LeaveBalanceCalculator:
    """Compute per-type balances for one user and one calendar year."""

    def __init__(self, flags: FeatureFlags) -> None:
        self.flags = flags

    @staticmethod
    def _in_year(record: LeaveRecord, year: int) -> bool:
        return date(year, 1, 1) <= record.start_date <= date(year, 12, 31)

    def calculate(
        self,
        entitlement: Entitlement,
        requests: Iterable[LeaveRecord],
        year: int,
    ) -> LeaveBalances:
        used = {t: _ZERO for t in LeaveType}
        pending = {t: _ZERO for t in LeaveType}

        for record in requests:
            if not self._in_year(record, year):
                continue
            if record.status == LeaveStatus.approved:
                used[record.type] += record.cost
            elif record.status == LeaveStatus.pending:
                pending[record.type] += record.cost

        def _counter(value: Optional[Decimal], default: Decimal) -> Decimal:
            return Decimal(value) if value is not None else default

        annual = BalanceBreakdown(
            total=_counter(entitlement.annual, DEFAULT_ANNUAL_LEAVE),
            used=used[LeaveType.annual],
        )
        toil = None
        if self.flags.toil_enabled:
            toil = BalanceBreakdown(
                total=_counter(entitlement.toil, DEFAULT_TOIL_BALANCE),
                used=used[LeaveType.toil],
            )
        sick = None
        if self.flags.sick_leave_enabled:
            sick = BalanceBreakdown(
                total=_counter(entitlement.sick, DEFAULT_SICK_LEAVE),
                used=used[LeaveType.sick],
            )

        return LeaveBalances(
            annual=annual,
            toil=toil,
            sick=sick,
            pending=PendingBreakdown(
                annual=pending[LeaveType.annual],
                toil=pending[LeaveType.toil],
                sick=pending[LeaveType.sick],
            ),
        )


def count_approved(requests: Iterable[LeaveRecord], leave_type: LeaveType, year: int) -> int:
    """Number of APPROVED requests of *leave_type* starting in *year*."""
    return sum(
        1
        for r in requests
        if r.type == leave_type
        and r.status == LeaveStatus.approved
        and r.start_date.year == year
    )
