"""Leave request validation — balance sufficiency and coverage conflicts.

The validator returns a :class:`ValidationResult` for anything the user can
fix themselves; it never raises for those. Services turn an invalid result
into a ``ValidationException``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from leave_tracker.common.constants import LeaveStatus, LeaveType
from leave_tracker.common.features import FeatureFlags
from leave_tracker.leave.balance import LeaveBalances, LeaveRecord, format_amount
from leave_tracker.leave.working_days import working_days

_BLOCKING_STATUSES = frozenset({LeaveStatus.pending, LeaveStatus.approved})


@dataclass(frozen=True)
class Applicant:
    id: uuid.UUID
    email: str


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(valid=False, error=error)


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and end_a >= start_b


class LeaveRequestValidator:
    """Checks a proposed request against balances and coverage peers."""

    def __init__(
        self,
        flags: FeatureFlags,
        coverage_emails: Iterable[str] = (),
    ) -> None:
        self.flags = flags
        self.coverage_emails = frozenset(e.lower() for e in coverage_emails)

    def is_coverage_user(self, email: Optional[str]) -> bool:
        return bool(email) and email.lower() in self.coverage_emails

    def validate(
        self,
        applicant: Applicant,
        leave_type: LeaveType,
        start: date,
        end: date,
        balances: LeaveBalances,
        hours: Optional[Decimal] = None,
        peer_leave: Iterable[LeaveRecord] = (),
    ) -> ValidationResult:
        if start > end:
            return ValidationResult.fail("Start date must be on or before end date.")

        if leave_type == LeaveType.annual:
            cost = Decimal(working_days(start, end))
            if balances.annual.remaining < cost:
                return ValidationResult.fail(
                    "Insufficient annual leave. You have "
                    f"{format_amount(balances.annual.remaining)} days remaining."
                )

        elif leave_type == LeaveType.toil:
            if not self.flags.can_request(LeaveType.toil):
                return ValidationResult.fail("TOIL requests are not enabled")
            if hours is None:
                return ValidationResult.fail(
                    "TOIL hours could not be calculated. "
                    "Please provide the scenario details or the number of hours."
                )
            remaining = balances.toil.remaining if balances.toil else Decimal("0")
            if remaining < Decimal(hours):
                return ValidationResult.fail(
                    "Insufficient TOIL balance. You have "
                    f"{format_amount(remaining)} hours remaining."
                )

        elif leave_type == LeaveType.sick:
            if not self.flags.can_request(LeaveType.sick):
                return ValidationResult.fail("Sick leave requests are not enabled")
            # statutory: sick leave is never refused for balance

        return self._check_coverage(applicant, start, end, peer_leave)

    def _check_coverage(
        self,
        applicant: Applicant,
        start: date,
        end: date,
        peer_leave: Iterable[LeaveRecord],
    ) -> ValidationResult:
        if not self.is_coverage_user(applicant.email):
            return ValidationResult.ok()

        conflicts: list[str] = []
        for record in peer_leave:
            if record.user_id == applicant.id:
                continue
            if record.status not in _BLOCKING_STATUSES:
                continue
            if record.user_email and not self.is_coverage_user(record.user_email):
                continue
            if ranges_overlap(record.start_date, record.end_date, start, end):
                who = record.user_name or record.user_email or str(record.user_id)
                conflicts.append(
                    f"{who} ({record.start_date.isoformat()} to {record.end_date.isoformat()})"
                )

        if conflicts:
            return ValidationResult.fail(
                "Leave conflict detected with coverage user(s): "
                f"{', '.join(conflicts)}. The office requires coverage at all times."
            )
        return ValidationResult.ok()
