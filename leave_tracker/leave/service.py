"""Leave service layer — balances, submission, decisions, bulk actions.

Business logic:
  - Balances are derived by ``LeaveBalanceCalculator`` from counters + history
  - Submission prices the request (working days or TOIL hours) and runs
    ``LeaveRequestValidator`` before storing it PENDING
  - Approve / reject / cancel go through the lifecycle state machine
  - Bulk approve / reject guard against the pending set changing mid-flight
  - Emails are sent after commit and never undo a decision
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_tracker.auth.models import User
from leave_tracker.auth.schemas import UserBrief
from leave_tracker.auth.service import UserService
from leave_tracker.common.audit import AuditAction, AuditEntity, create_audit_entry
from leave_tracker.common.constants import (
    LARGE_BULK_OPERATION,
    MIN_BULK_REJECTION_REASON_LENGTH,
    LeaveStatus,
    LeaveType,
)
from leave_tracker.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from leave_tracker.common.features import FeatureFlags
from leave_tracker.common.pagination import PaginationParams, paginate
from leave_tracker.leave.balance import (
    Entitlement,
    LeaveBalanceCalculator,
    LeaveBalances,
    LeaveRecord,
    count_approved,
)
from leave_tracker.leave.lifecycle import ensure_transition
from leave_tracker.leave.models import LeaveRequest
from leave_tracker.leave.schemas import (
    BalanceOut,
    BulkDecisionOut,
    EmployeeBalanceOut,
    EmployeeBalancesOut,
    LeaveBalancesOut,
    LeaveCalendarEntry,
    LeaveCalendarOut,
    LeaveRequestCreate,
    LeaveRequestListOut,
    LeaveRequestOut,
    LegacyBalanceOut,
    PendingOut,
)
from leave_tracker.leave.validator import Applicant, LeaveRequestValidator
from leave_tracker.leave.working_days import working_days
from leave_tracker.notifications.service import DispatchResult, Notifier
from leave_tracker.toil.calculator import calculate_toil_hours

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def _breakdown_out(breakdown) -> Optional[BalanceOut]:
    if breakdown is None:
        return None
    return BalanceOut(**breakdown.as_dict())


def to_request_out(request: LeaveRequest, *, with_user: bool = False) -> LeaveRequestOut:
    out = LeaveRequestOut.model_validate(request)
    update_fields: dict = {"working_days": working_days(request.start_date, request.end_date)}
    if with_user:
        update_fields["requester"] = UserBrief.model_validate(request.user)
    return out.model_copy(update=update_fields)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations bound to one session and one flag snapshot."""

    def __init__(
        self,
        db: AsyncSession,
        flags: FeatureFlags,
        coverage_emails: Iterable[str] = (),
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.db = db
        self.flags = flags
        self.notifier = notifier
        self.calculator = LeaveBalanceCalculator(flags)
        self.validator = LeaveRequestValidator(flags, coverage_emails)

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    async def _records_for_year(self, user_id: uuid.UUID, year: int) -> list[LeaveRecord]:
        first, last = _year_bounds(year)
        result = await self.db.execute(
            select(LeaveRequest).where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.start_date >= first,
                LeaveRequest.start_date <= last,
            )
        )
        return [LeaveRecord.from_model(r) for r in result.scalars().all()]

    async def _peer_leave(
        self, applicant_id: uuid.UUID, start: date, end: date,
    ) -> list[LeaveRecord]:
        """Active leave of other coverage users overlapping [start, end]."""
        emails = list(self.validator.coverage_emails)
        if not emails:
            return []
        result = await self.db.execute(
            select(LeaveRequest)
            .join(User, LeaveRequest.user_id == User.id)
            .where(
                User.email.in_(emails),
                LeaveRequest.user_id != applicant_id,
                LeaveRequest.status.in_(_ACTIVE_STATUSES),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
            .options(selectinload(LeaveRequest.user))
        )
        return [LeaveRecord.from_model(r, with_user=True) for r in result.scalars().all()]

    async def _get_for_update(self, request_id: uuid.UUID) -> LeaveRequest:
        result = await self.db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.user))
            .with_for_update()
        )
        request = result.scalars().first()
        if request is None:
            raise NotFoundException("LeaveRequest", request_id)
        return request

    async def _count_pending(self) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.status == LeaveStatus.pending
            )
        )
        return result.scalar_one()

    async def _pending_ids(self) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(LeaveRequest.id).where(LeaveRequest.status == LeaveStatus.pending)
        )
        return list(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    async def _compute_balances(
        self, user_id: uuid.UUID, year: int,
    ) -> tuple[LeaveBalances, list[LeaveRecord]]:
        user = await UserService.get_user(self.db, user_id)
        records = await self._records_for_year(user_id, year)
        return self.calculator.calculate(Entitlement.from_user(user), records, year), records

    async def get_balances(self, user_id: uuid.UUID, year: int) -> LeaveBalances:
        balances, _ = await self._compute_balances(user_id, year)
        return balances

    async def get_balance_summary(self, user_id: uuid.UUID, year: int) -> LeaveBalancesOut:
        balances, records = await self._compute_balances(user_id, year)
        return self._summary_out(balances, records, year)

    async def balances_overview(self, year: int) -> EmployeeBalancesOut:
        """Balances of every active user for *year* (admin view)."""
        users = (
            await self.db.execute(
                select(User)
                .where(User.is_active.is_(True))
                .order_by(User.name.asc(), User.email.asc())
            )
        ).scalars().all()

        first, last = _year_bounds(year)
        result = await self.db.execute(
            select(LeaveRequest).where(
                LeaveRequest.start_date >= first,
                LeaveRequest.start_date <= last,
            )
        )
        by_user: dict[uuid.UUID, list[LeaveRecord]] = defaultdict(list)
        for request in result.scalars().all():
            by_user[request.user_id].append(LeaveRecord.from_model(request))

        employees = []
        for user in users:
            records = by_user.get(user.id, [])
            balances = self.calculator.calculate(Entitlement.from_user(user), records, year)
            employees.append(
                EmployeeBalanceOut(
                    user=UserBrief.model_validate(user),
                    balances=self._summary_out(balances, records, year),
                )
            )
        return EmployeeBalancesOut(year=year, employees=employees)

    @staticmethod
    def _summary_out(
        balances: LeaveBalances, records: list[LeaveRecord], year: int,
    ) -> LeaveBalancesOut:
        legacy = balances.legacy_summary()
        return LeaveBalancesOut(
            year=year,
            annual=_breakdown_out(balances.annual),
            toil=_breakdown_out(balances.toil),
            sick=_breakdown_out(balances.sick),
            pending=PendingOut(
                annual=balances.pending.annual,
                toil=balances.pending.toil,
                sick=balances.pending.sick,
                total=balances.pending.total,
            ),
            legacy=LegacyBalanceOut(
                **legacy,
                approved_leaves=count_approved(records, LeaveType.annual, year),
            ),
        )

    # ─────────────────────────────────────────────────────────────────
    # Submission
    # ─────────────────────────────────────────────────────────────────

    def _price_toil(self, body: LeaveRequestCreate) -> Optional[Decimal]:
        if body.hours is not None:
            return body.hours
        if body.scenario is None:
            return None
        hours = calculate_toil_hours(
            body.scenario,
            body.travel_date or body.start_date,
            body.return_date,
            body.return_time,
        )
        return Decimal(hours) if hours is not None else None

    async def submit_request(self, user: User, body: LeaveRequestCreate) -> LeaveRequestOut:
        """Validate and store a new PENDING request for *user*."""
        leave_type = body.type or LeaveType.annual
        start, end = body.start_date, body.end_date

        hours: Optional[Decimal] = None
        if leave_type == LeaveType.toil:
            hours = self._price_toil(body)
            if hours is not None and hours <= 0:
                raise ValidationException(
                    {"hours": ["This scenario earns no TOIL hours to take as leave."]}
                )
        elif start <= end and working_days(start, end) == 0:
            raise ValidationException(
                {"start_date": ["No working days in the selected range."]}
            )

        balances = await self.get_balances(user.id, start.year)
        peers = []
        if self.validator.is_coverage_user(user.email) and start <= end:
            peers = await self._peer_leave(user.id, start, end)

        verdict = self.validator.validate(
            Applicant(id=user.id, email=user.email),
            leave_type,
            start,
            end,
            balances,
            hours=hours,
            peer_leave=peers,
        )
        if not verdict.valid:
            logger.info("Leave request by %s refused: %s", user.email, verdict.error)
            raise ValidationException({"request": [verdict.error]})

        request = LeaveRequest(
            user_id=user.id,
            type=leave_type,
            start_date=start,
            end_date=end,
            hours=hours,
            status=LeaveStatus.pending,
            comments=body.comments,
        )
        self.db.add(request)
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action=AuditAction.create,
            entity_type=AuditEntity.leave_request,
            entity_id=request.id,
            actor_id=user.id,
            new_values={
                "type": leave_type.value,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "hours": str(hours) if hours is not None else None,
            },
        )
        await self.db.commit()
        logger.info(
            "Leave request %s submitted by %s (%s, %s to %s)",
            request.id, user.email, leave_type.value, start, end,
        )

        if self.notifier is not None:
            admin_emails = await UserService.list_admin_emails(self.db)
            await self.notifier.leave_submitted(request, user, admin_emails)
        return to_request_out(request)

    # ─────────────────────────────────────────────────────────────────
    # Single-request decisions
    # ─────────────────────────────────────────────────────────────────

    async def _decide(
        self,
        request_id: uuid.UUID,
        admin: User,
        target: LeaveStatus,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        request = await self._get_for_update(request_id)
        ensure_transition(request.status, target)

        old_status = request.status
        now = _utcnow()
        request.status = target
        request.approved_by = admin.id
        request.approved_at = now
        request.decision_reason = reason
        request.updated_at = now
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action=AuditAction.approve if target == LeaveStatus.approved else AuditAction.reject,
            entity_type=AuditEntity.leave_request,
            entity_id=request.id,
            actor_id=admin.id,
            old_values={"status": LeaveStatus(old_status).value},
            new_values={"status": target.value, "reason": reason},
        )
        await self.db.commit()
        logger.info("Leave request %s %s by %s", request.id, target.value, admin.email)

        if self.notifier is not None:
            await self.notifier.leave_decided(request, request.user)
        return to_request_out(request, with_user=True)

    async def approve_request(self, request_id: uuid.UUID, admin: User) -> LeaveRequestOut:
        """Approve a PENDING request; usage is picked up on the next balance read."""
        return await self._decide(request_id, admin, LeaveStatus.approved)

    async def reject_request(
        self, request_id: uuid.UUID, admin: User, reason: str,
    ) -> LeaveRequestOut:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException({"reason": ["A rejection reason is required."]})
        return await self._decide(request_id, admin, LeaveStatus.rejected, reason)

    async def cancel_request(self, request_id: uuid.UUID, requester: User) -> LeaveRequestOut:
        """Withdraw one's own PENDING request."""
        request = await self._get_for_update(request_id)
        if request.user_id != requester.id:
            raise ForbiddenException(detail="You can only cancel your own leave requests.")
        ensure_transition(request.status, LeaveStatus.cancelled)

        now = _utcnow()
        request.status = LeaveStatus.cancelled
        request.cancelled_at = now
        request.updated_at = now
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action=AuditAction.cancel,
            entity_type=AuditEntity.leave_request,
            entity_id=request.id,
            actor_id=requester.id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.cancelled.value},
        )
        await self.db.commit()
        logger.info("Leave request %s cancelled by %s", request.id, requester.email)

        if self.notifier is not None:
            admin_emails = await UserService.list_admin_emails(self.db)
            await self.notifier.leave_cancelled(request, requester, admin_emails)
        return to_request_out(request)

    # ─────────────────────────────────────────────────────────────────
    # Bulk decisions
    # ─────────────────────────────────────────────────────────────────

    async def _bulk_decide(
        self,
        admin: User,
        target: LeaveStatus,
        reason: Optional[str] = None,
    ) -> BulkDecisionOut:
        snapshot = await self._pending_ids()
        if not snapshot:
            return BulkDecisionOut(processed=0, emails_sent=0)
        if len(snapshot) > LARGE_BULK_OPERATION:
            logger.warning(
                "Large bulk %s of %d requests by %s", target.value, len(snapshot), admin.email,
            )

        # Optimistic check: the pending set must not have moved since the snapshot.
        current = await self._count_pending()
        if current != len(snapshot):
            logger.warning(
                "Bulk %s aborted: pending count changed from %d to %d",
                target.value, len(snapshot), current,
            )
            raise ConflictError(
                errors={"pending": [f"expected {len(snapshot)}, found {current}"]},
            )

        now = _utcnow()
        result = await self.db.execute(
            update(LeaveRequest)
            .where(
                LeaveRequest.id.in_(snapshot),
                LeaveRequest.status == LeaveStatus.pending,
            )
            .values(
                status=target,
                approved_by=admin.id,
                approved_at=now,
                decision_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(snapshot):
            await self.db.rollback()
            logger.warning(
                "Bulk %s aborted: updated %d of %d snapshot rows",
                target.value, result.rowcount, len(snapshot),
            )
            raise ConflictError()

        await create_audit_entry(
            self.db,
            action=(
                AuditAction.bulk_approve
                if target == LeaveStatus.approved
                else AuditAction.bulk_reject
            ),
            entity_type=AuditEntity.leave_request,
            actor_id=admin.id,
            new_values={
                "status": target.value,
                "count": len(snapshot),
                "request_ids": [str(i) for i in snapshot],
                "reason": reason,
            },
        )
        await self.db.commit()
        logger.info("Bulk %s of %d requests by %s", target.value, len(snapshot), admin.email)

        dispatch = DispatchResult()
        if self.notifier is not None:
            decided = await self.db.execute(
                select(LeaveRequest)
                .where(LeaveRequest.id.in_(snapshot))
                .options(selectinload(LeaveRequest.user))
                .execution_options(populate_existing=True)
            )
            dispatch = await self.notifier.bulk_decided(
                decided.scalars().all(), target, reason,
            )
        return BulkDecisionOut(
            processed=len(snapshot),
            emails_sent=dispatch.sent,
            email_errors=dispatch.errors,
        )

    async def bulk_reject_pending(self, admin: User, reason: str) -> BulkDecisionOut:
        """Reject every PENDING request in one all-or-nothing step."""
        reason = (reason or "").strip()
        if len(reason) < MIN_BULK_REJECTION_REASON_LENGTH:
            raise ValidationException(
                {"reason": [
                    "Rejection reason must be at least "
                    f"{MIN_BULK_REJECTION_REASON_LENGTH} characters."
                ]}
            )
        return await self._bulk_decide(admin, LeaveStatus.rejected, reason)

    async def bulk_approve_pending(self, admin: User) -> BulkDecisionOut:
        """Approve every PENDING request in one all-or-nothing step."""
        return await self._bulk_decide(admin, LeaveStatus.approved)

    # ─────────────────────────────────────────────────────────────────
    # Listing
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _filtered(
        query: Select,
        status: Optional[LeaveStatus],
        leave_type: Optional[LeaveType],
        year: Optional[int],
    ) -> Select:
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if leave_type == LeaveType.annual:
            query = query.where(
                or_(LeaveRequest.type == LeaveType.annual, LeaveRequest.type.is_(None))
            )
        elif leave_type is not None:
            query = query.where(LeaveRequest.type == leave_type)
        if year is not None:
            first, last = _year_bounds(year)
            query = query.where(
                and_(LeaveRequest.start_date >= first, LeaveRequest.start_date <= last)
            )
        return query

    async def list_requests(
        self,
        user_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        year: Optional[int] = None,
    ) -> LeaveRequestListOut:
        query = self._filtered(
            select(LeaveRequest).where(LeaveRequest.user_id == user_id),
            status, leave_type, year,
        ).order_by(LeaveRequest.start_date.desc())

        rows, meta = await paginate(self.db, query, pagination)
        return LeaveRequestListOut(data=[to_request_out(r) for r in rows], meta=meta)

    async def list_all_requests(
        self,
        pagination: PaginationParams,
        *,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        year: Optional[int] = None,
    ) -> LeaveRequestListOut:
        """Every user's requests (admin view), newest first."""
        query = select(LeaveRequest).options(selectinload(LeaveRequest.user))
        if user_id is not None:
            query = query.where(LeaveRequest.user_id == user_id)
        query = self._filtered(query, status, leave_type, year).order_by(
            LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc(),
        )

        rows, meta = await paginate(self.db, query, pagination)
        return LeaveRequestListOut(
            data=[to_request_out(r, with_user=True) for r in rows], meta=meta,
        )

    async def list_pending(self, pagination: PaginationParams) -> LeaveRequestListOut:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.status == LeaveStatus.pending)
            .options(selectinload(LeaveRequest.user))
            .order_by(LeaveRequest.created_at.asc())
        )
        rows, meta = await paginate(self.db, query, pagination)
        return LeaveRequestListOut(
            data=[to_request_out(r, with_user=True) for r in rows], meta=meta,
        )

    async def team_calendar(self, start: date, end: date) -> LeaveCalendarOut:
        """Approved and pending leave overlapping [start, end], everyone."""
        if start > end:
            raise ValidationException({"start": ["Start date must be on or before end date."]})
        result = await self.db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.status.in_(_ACTIVE_STATUSES),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
            .options(selectinload(LeaveRequest.user))
            .order_by(LeaveRequest.start_date.asc())
        )
        entries = [
            LeaveCalendarEntry(
                request_id=r.id,
                user_id=r.user_id,
                user_name=r.user.display_name,
                type=r.effective_type,
                status=r.status,
                start_date=r.start_date,
                end_date=r.end_date,
            )
            for r in result.scalars().all()
        ]
        return LeaveCalendarOut(start=start, end=end, entries=entries)
