"""Leave service tests — submission, decisions, bulk actions, listing.

Runs against the in-memory SQLite database from conftest; services are
built directly on the ``db`` session.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from leave_tracker.common.audit import AuditEntity, AuditTrail, audit_history
from leave_tracker.common.constants import LeaveStatus, LeaveType, ToilScenario
from leave_tracker.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leave_tracker.common.pagination import PaginationParams
from leave_tracker.leave.models import LeaveRequest
from leave_tracker.leave.schemas import LeaveRequestCreate
from leave_tracker.leave.service import LeaveService
from leave_tracker.notifications.service import Notifier
from tests.conftest import (
    ALL_FLAGS,
    COVERAGE_EMAILS,
    FRIDAY,
    MONDAY,
    NO_FLAGS,
    SATURDAY,
    SUNDAY,
    FailingSender,
    make_request,
    make_user,
)

YEAR = 2026
FIRST_PAGE = PaginationParams(page=1, page_size=50)


@pytest.fixture
def service(db, notifier) -> LeaveService:
    return LeaveService(db, ALL_FLAGS, COVERAGE_EMAILS, notifier)


async def _statuses(db) -> dict[LeaveStatus, int]:
    result = await db.execute(
        select(LeaveRequest.status, func.count()).group_by(LeaveRequest.status)
    )
    return {LeaveStatus(status): count for status, count in result.all()}


# ═══════════════════════════════════════════════════════════════════
# Balances
# ═══════════════════════════════════════════════════════════════════


class TestBalances:

    async def test_approval_reduces_remaining_not_counter(self, db, service, employee, admin):
        out = await service.submit_request(
            employee,
            LeaveRequestCreate(type=LeaveType.annual, start_date=MONDAY, end_date=FRIDAY),
        )
        await service.approve_request(out.id, admin)

        balances = await service.get_balances(employee.id, YEAR)
        assert balances.annual.total == Decimal("32")
        assert balances.annual.used == 5
        assert balances.annual.remaining == 27

        await db.refresh(employee)
        assert employee.annual_leave_balance == Decimal("32")

    async def test_repeated_reads_agree(self, db, service, employee):
        await make_request(db, employee, status=LeaveStatus.approved)
        first = await service.get_balances(employee.id, YEAR)
        second = await service.get_balances(employee.id, YEAR)
        assert first == second

    async def test_summary_includes_legacy_block(self, db, service, employee):
        await make_request(db, employee, status=LeaveStatus.approved)
        await make_request(db, employee, type=None, start=date(2026, 4, 6),
                           end=date(2026, 4, 6), status=LeaveStatus.approved)
        await make_request(db, employee, type=LeaveType.sick, start=date(2026, 5, 4),
                           end=date(2026, 5, 5), status=LeaveStatus.pending)

        summary = await service.get_balance_summary(employee.id, YEAR)
        assert summary.year == YEAR
        assert summary.annual.used == 6
        assert summary.pending.sick == 2
        assert summary.pending.total == 2
        assert summary.legacy.days_used == 6
        assert summary.legacy.approved_leaves == 2

    async def test_disabled_types_are_omitted(self, db, employee):
        summary = await LeaveService(db, NO_FLAGS).get_balance_summary(employee.id, YEAR)
        assert summary.toil is None
        assert summary.sick is None

    async def test_unknown_user(self, service):
        with pytest.raises(NotFoundException):
            await service.get_balances(uuid.uuid4(), YEAR)


# ═══════════════════════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════════════════════


class TestSubmit:

    async def test_missing_type_is_annual(self, service, employee, sender, admin):
        out = await service.submit_request(
            employee, LeaveRequestCreate(start_date=MONDAY, end_date=FRIDAY),
        )
        assert out.type == LeaveType.annual
        assert out.status == LeaveStatus.pending
        assert out.working_days == 5
        assert [to for to, _, _ in sender.outbox] == [admin.email]

    async def test_insufficient_annual(self, db, service):
        user = await make_user(db, annual_leave_balance=Decimal("2"))
        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                user, LeaveRequestCreate(start_date=MONDAY, end_date=FRIDAY),
            )
        assert "2 days remaining" in str(exc_info.value.errors)

    async def test_weekend_only_range_rejected(self, service, employee):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                employee, LeaveRequestCreate(start_date=SATURDAY, end_date=SUNDAY),
            )
        assert "no working days" in str(exc_info.value.errors).lower()

    async def test_inverted_range_rejected(self, service, employee):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                employee, LeaveRequestCreate(start_date=FRIDAY, end_date=MONDAY),
            )
        assert "on or before" in str(exc_info.value.errors)

    async def test_toil_hours_from_scenario(self, db, service):
        user = await make_user(db, toil_balance=Decimal("8"))
        out = await service.submit_request(
            user,
            LeaveRequestCreate(
                type=LeaveType.toil,
                start_date=MONDAY,
                end_date=MONDAY,
                scenario=ToilScenario.overnight_working_day,
                return_date=date(2026, 3, 3),
                return_time="21:45",
            ),
        )
        assert out.type == LeaveType.toil
        assert out.hours == Decimal("3")

    async def test_toil_without_time_is_blocked(self, db, service):
        user = await make_user(db, toil_balance=Decimal("8"))
        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                user,
                LeaveRequestCreate(
                    type=LeaveType.toil,
                    start_date=MONDAY,
                    end_date=MONDAY,
                    scenario=ToilScenario.overnight_working_day,
                    return_date=date(2026, 3, 3),
                ),
            )
        assert "could not be calculated" in str(exc_info.value.errors)

    async def test_toil_zero_hour_scenario_rejected(self, db, service):
        user = await make_user(db, toil_balance=Decimal("8"))
        with pytest.raises(ValidationException):
            await service.submit_request(
                user,
                LeaveRequestCreate(
                    type=LeaveType.toil, start_date=MONDAY, end_date=MONDAY,
                    scenario=ToilScenario.local_show,
                ),
            )

    async def test_toil_insufficient(self, service, employee):
        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                employee,
                LeaveRequestCreate(
                    type=LeaveType.toil, start_date=MONDAY, end_date=MONDAY,
                    hours=Decimal("4"),
                ),
            )
        assert "0 hours remaining" in str(exc_info.value.errors)

    async def test_toil_disabled(self, db, employee):
        service = LeaveService(db, NO_FLAGS)
        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                employee,
                LeaveRequestCreate(
                    type=LeaveType.toil, start_date=MONDAY, end_date=MONDAY,
                    hours=Decimal("1"),
                ),
            )
        assert "not enabled" in str(exc_info.value.errors)

    async def test_sick_ignores_balance(self, db, service):
        user = await make_user(db, sick_leave_balance=Decimal("0"))
        out = await service.submit_request(
            user,
            LeaveRequestCreate(type=LeaveType.sick, start_date=MONDAY, end_date=FRIDAY),
        )
        assert out.type == LeaveType.sick

    async def test_coverage_conflict(self, db, service):
        one = await make_user(db, email="agent.one@example.com", name="Agent One")
        two = await make_user(db, email="agent.two@example.com", name="Agent Two")
        await make_request(db, two, status=LeaveStatus.approved)

        with pytest.raises(ValidationException) as exc_info:
            await service.submit_request(
                one, LeaveRequestCreate(start_date=date(2026, 3, 5), end_date=date(2026, 3, 9)),
            )
        message = str(exc_info.value.errors)
        assert "Agent Two (2026-03-02 to 2026-03-06)" in message
        assert "coverage at all times" in message

    async def test_coverage_ignores_non_coverage_colleagues(self, db, service, employee):
        one = await make_user(db, email="agent.one@example.com", name="Agent One")
        await make_request(db, employee, status=LeaveStatus.approved)
        out = await service.submit_request(
            one, LeaveRequestCreate(start_date=MONDAY, end_date=FRIDAY),
        )
        assert out.status == LeaveStatus.pending

    async def test_submission_is_audited(self, db, service, employee):
        out = await service.submit_request(
            employee, LeaveRequestCreate(start_date=MONDAY, end_date=MONDAY),
        )
        result = await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == out.id)
        )
        entry = result.scalars().one()
        assert entry.action == "create"
        assert entry.actor_id == employee.id


# ═══════════════════════════════════════════════════════════════════
# Single decisions
# ═══════════════════════════════════════════════════════════════════


class TestDecisions:

    async def test_approve(self, db, service, employee, admin, sender):
        request = await make_request(db, employee)
        out = await service.approve_request(request.id, admin)
        assert out.status == LeaveStatus.approved
        assert out.approved_by == admin.id
        assert out.requester.email == employee.email
        assert sender.outbox[-1][0] == employee.email

    async def test_approve_twice(self, db, service, employee, admin):
        request = await make_request(db, employee)
        await service.approve_request(request.id, admin)
        with pytest.raises(ValidationException) as exc_info:
            await service.approve_request(request.id, admin)
        assert "already approved" in str(exc_info.value.errors)

    async def test_reject_requires_reason(self, db, service, employee, admin):
        request = await make_request(db, employee)
        with pytest.raises(ValidationException):
            await service.reject_request(request.id, admin, "   ")

    async def test_reject_records_reason(self, db, service, employee, admin, sender):
        request = await make_request(db, employee)
        out = await service.reject_request(request.id, admin, "Peak season")
        assert out.status == LeaveStatus.rejected
        assert out.decision_reason == "Peak season"
        assert "Peak season" in sender.outbox[-1][2]

    async def test_unknown_request(self, service, admin):
        with pytest.raises(NotFoundException):
            await service.approve_request(uuid.uuid4(), admin)

    async def test_email_failure_keeps_decision(self, db, employee, admin):
        failing = FailingSender()
        service = LeaveService(db, ALL_FLAGS, (), Notifier(failing))
        request = await make_request(db, employee)

        out = await service.approve_request(request.id, admin)
        assert out.status == LeaveStatus.approved
        assert failing.attempts == 1

        await db.refresh(request)
        assert request.status == LeaveStatus.approved

    async def test_history_records_each_step(self, service, employee, admin):
        out = await service.submit_request(
            employee, LeaveRequestCreate(start_date=MONDAY, end_date=MONDAY),
        )
        await service.reject_request(out.id, admin, "Peak season")

        history = await audit_history(service.db, AuditEntity.leave_request, out.id)
        assert [e.action for e in history] == ["create", "reject"]
        assert history[1].old_values == {"status": "pending"}
        assert history[1].new_values["reason"] == "Peak season"


class TestCancel:

    async def test_owner_cancels_pending(self, db, service, employee):
        request = await make_request(db, employee)
        out = await service.cancel_request(request.id, employee)
        assert out.status == LeaveStatus.cancelled
        assert out.cancelled_at is not None

    async def test_someone_else_cannot_cancel(self, db, service, employee):
        other = await make_user(db)
        request = await make_request(db, employee)
        with pytest.raises(ForbiddenException):
            await service.cancel_request(request.id, other)

    async def test_approved_cannot_be_cancelled(self, db, service, employee):
        request = await make_request(db, employee, status=LeaveStatus.approved)
        with pytest.raises(ValidationException) as exc_info:
            await service.cancel_request(request.id, employee)
        assert "already approved" in str(exc_info.value.errors)

    async def test_cancel_notifies_requester_and_admins(self, db, service, employee, admin, sender):
        request = await make_request(db, employee)
        await service.cancel_request(request.id, employee)

        by_recipient = {to: (subject, body) for to, subject, body in sender.outbox}
        assert set(by_recipient) == {employee.email, admin.email}
        assert by_recipient[employee.email][0] == "Your leave request has been cancelled"
        assert "2026-03-02 to 2026-03-06" in by_recipient[employee.email][1]
        assert by_recipient[admin.email][0] == "Leave request cancelled by Jane Doe"

    async def test_email_failure_keeps_cancellation(self, db, employee, admin):
        failing = FailingSender()
        service = LeaveService(db, ALL_FLAGS, (), Notifier(failing))
        request = await make_request(db, employee)

        out = await service.cancel_request(request.id, employee)
        assert out.status == LeaveStatus.cancelled
        assert failing.attempts == 2

        await db.refresh(request)
        assert request.status == LeaveStatus.cancelled


# ═══════════════════════════════════════════════════════════════════
# Bulk decisions
# ═══════════════════════════════════════════════════════════════════


class TestBulk:

    async def test_bulk_reject_all_pending(self, db, service, employee, admin, sender):
        other = await make_user(db, name="Other Person")
        await make_request(db, employee)
        await make_request(db, employee, start=date(2026, 4, 6), end=date(2026, 4, 7))
        await make_request(db, other)
        await make_request(db, other, status=LeaveStatus.approved, start=date(2026, 5, 4),
                           end=date(2026, 5, 4))

        out = await service.bulk_reject_pending(admin, "Office closure week")
        assert out.processed == 3
        # one email per affected user
        assert out.emails_sent == 2
        assert out.email_errors == []
        assert sorted(to for to, _, _ in sender.outbox) == sorted([employee.email, other.email])

        assert await _statuses(db) == {LeaveStatus.rejected: 3, LeaveStatus.approved: 1}

    async def test_bulk_reject_reason_too_short(self, db, service, employee, admin):
        await make_request(db, employee)
        with pytest.raises(ValidationException) as exc_info:
            await service.bulk_reject_pending(admin, "  no   ")
        assert "at least 10" in str(exc_info.value.errors)
        assert await _statuses(db) == {LeaveStatus.pending: 1}

    async def test_bulk_approve(self, db, service, employee, admin):
        await make_request(db, employee)
        await make_request(db, employee, start=date(2026, 4, 6), end=date(2026, 4, 7))
        out = await service.bulk_approve_pending(admin)
        assert out.processed == 2
        assert await _statuses(db) == {LeaveStatus.approved: 2}

    async def test_nothing_pending(self, service, admin):
        out = await service.bulk_approve_pending(admin)
        assert out.processed == 0
        assert out.emails_sent == 0

    async def test_pending_set_changed_mid_flight(self, db, service, employee, admin, monkeypatch):
        await make_request(db, employee)
        await make_request(db, employee, start=date(2026, 4, 6), end=date(2026, 4, 7))
        original_count = service._count_pending

        async def count_after_new_submission():
            db.add(LeaveRequest(
                user_id=employee.id, type=LeaveType.annual,
                start_date=date(2026, 6, 1), end_date=date(2026, 6, 1),
                status=LeaveStatus.pending,
            ))
            await db.flush()
            return await original_count()

        monkeypatch.setattr(service, "_count_pending", count_after_new_submission)

        with pytest.raises(ConflictError) as exc_info:
            await service.bulk_reject_pending(admin, "Office closure week")
        assert exc_info.value.status_code == 409
        assert "refresh" in exc_info.value.detail

        await db.rollback()
        assert await _statuses(db) == {LeaveStatus.pending: 2}

    async def test_pending_set_swapped_with_same_count(
        self, db, service, employee, admin, monkeypatch,
    ):
        first = await make_request(db, employee)
        await make_request(db, employee, start=date(2026, 4, 6), end=date(2026, 4, 7))
        original_count = service._count_pending

        async def count_after_swap():
            # one snapshot row decided elsewhere, one new row submitted
            first.status = LeaveStatus.approved
            db.add(LeaveRequest(
                user_id=employee.id, type=LeaveType.annual,
                start_date=date(2026, 6, 1), end_date=date(2026, 6, 1),
                status=LeaveStatus.pending,
            ))
            await db.flush()
            return await original_count()

        monkeypatch.setattr(service, "_count_pending", count_after_swap)

        with pytest.raises(ConflictError) as exc_info:
            await service.bulk_approve_pending(admin)
        assert exc_info.value.status_code == 409

        # the partial update and the swap were rolled back together
        assert await _statuses(db) == {LeaveStatus.pending: 2}
        result = await db.execute(
            select(AuditTrail).where(AuditTrail.action == "bulk_approve")
        )
        assert result.scalars().all() == []

    async def test_bulk_is_audited(self, db, service, employee, admin):
        await make_request(db, employee)
        await service.bulk_approve_pending(admin)
        result = await db.execute(
            select(AuditTrail).where(AuditTrail.action == "bulk_approve")
        )
        entry = result.scalars().one()
        assert entry.actor_id == admin.id
        assert entry.new_values["count"] == 1


# ═══════════════════════════════════════════════════════════════════
# Listing
# ═══════════════════════════════════════════════════════════════════


class TestListing:

    async def test_annual_filter_includes_untyped_rows(self, db, service, employee):
        await make_request(db, employee, type=None)
        await make_request(db, employee, type=LeaveType.annual, start=date(2026, 4, 6),
                           end=date(2026, 4, 6))
        await make_request(db, employee, type=LeaveType.sick, start=date(2026, 5, 4),
                           end=date(2026, 5, 4))

        out = await service.list_requests(
            employee.id, FIRST_PAGE, leave_type=LeaveType.annual,
        )
        assert out.meta.total == 2
        assert {r.type for r in out.data} == {LeaveType.annual}

    async def test_status_and_year_filters(self, db, service, employee):
        await make_request(db, employee, status=LeaveStatus.approved)
        await make_request(db, employee, start=date(2025, 6, 2), end=date(2025, 6, 2))
        out = await service.list_requests(
            employee.id, FIRST_PAGE, status=LeaveStatus.pending, year=2025,
        )
        assert out.meta.total == 1
        assert out.data[0].start_date == date(2025, 6, 2)

    async def test_list_pending_includes_requester(self, db, service, employee):
        await make_request(db, employee)
        await make_request(db, employee, status=LeaveStatus.rejected)
        out = await service.list_pending(FIRST_PAGE)
        assert out.meta.total == 1
        assert out.data[0].requester.name == "Jane Doe"

    async def test_list_all_requests_spans_users(self, db, service, employee):
        other = await make_user(db, name="Other Person")
        await make_request(db, employee)
        await make_request(db, other, status=LeaveStatus.approved)
        await make_request(db, other, start=date(2025, 6, 2), end=date(2025, 6, 2))

        everyone = await service.list_all_requests(FIRST_PAGE)
        assert everyone.meta.total == 3
        assert {r.requester.email for r in everyone.data} == {employee.email, other.email}

        filtered = await service.list_all_requests(
            FIRST_PAGE, user_id=other.id, status=LeaveStatus.pending, year=2025,
        )
        assert filtered.meta.total == 1
        assert filtered.data[0].requester.name == "Other Person"
        assert filtered.data[0].start_date == date(2025, 6, 2)

    async def test_balances_overview(self, db, service, employee, admin):
        gone = await make_user(db, name="Former Colleague")
        gone.is_active = False
        await db.commit()
        await make_request(db, employee, status=LeaveStatus.approved)
        await make_request(db, employee, start=date(2026, 4, 6), end=date(2026, 4, 7))

        overview = await service.balances_overview(YEAR)
        assert overview.year == YEAR
        assert [e.user.name for e in overview.employees] == ["Jane Doe", "The Boss"]

        jane = overview.employees[0].balances
        assert jane.annual.used == 5
        assert jane.annual.remaining == 27
        assert jane.pending.annual == 2
        assert jane.toil is not None
        boss = overview.employees[1].balances
        assert boss.annual.remaining == 32

    async def test_team_calendar(self, db, service, employee):
        other = await make_user(db, name="Other Person")
        await make_request(db, employee, status=LeaveStatus.approved)
        await make_request(db, other, start=date(2026, 3, 5), end=date(2026, 3, 10))
        await make_request(db, other, status=LeaveStatus.cancelled)
        await make_request(db, other, start=date(2026, 4, 6), end=date(2026, 4, 6))

        calendar = await service.team_calendar(date(2026, 3, 1), date(2026, 3, 31))
        assert [e.user_name for e in calendar.entries] == ["Jane Doe", "Other Person"]

    async def test_team_calendar_inverted(self, service):
        with pytest.raises(ValidationException):
            await service.team_calendar(FRIDAY, MONDAY)
