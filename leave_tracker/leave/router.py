"""Leave router — balances, requests, decisions, bulk actions, calendar.

All endpoints require authentication. Decision endpoints require an admin role.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from leave_tracker.auth.dependencies import get_current_user, require_admin
from leave_tracker.auth.models import User
from leave_tracker.common.constants import LeaveStatus, LeaveType
from leave_tracker.common.features import FeatureFlags
from leave_tracker.common.pagination import PaginationParams
from leave_tracker.common.rate_limit import BULK_RATE_LIMIT, limiter
from leave_tracker.dependencies import get_feature_flags, get_leave_service
from leave_tracker.leave.schemas import (
    BulkDecisionOut,
    BulkRejectRequest,
    EmployeeBalancesOut,
    LeaveBalancesOut,
    LeaveCalendarOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestListOut,
    LeaveRequestOut,
    LeaveTypesOut,
)
from leave_tracker.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=LeaveTypesOut)
async def leave_types(
    user: User = Depends(get_current_user),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    """Leave types the caller may currently request."""
    return LeaveTypesOut(
        types=flags.available_leave_types(),
        multi_leave_type_enabled=flags.multi_leave_type_enabled,
    )


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=LeaveBalancesOut)
async def my_balances(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Per-type total / used / remaining for the caller; defaults to this year."""
    return await service.get_balance_summary(user.id, year or date.today().year)


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def submit_request(
    body: LeaveRequestCreate,
    user: User = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Submit a leave request. Validates balance and coverage conflicts."""
    return await service.submit_request(user, body)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=LeaveRequestListOut)
async def my_requests(
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None, alias="type"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    pagination: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """The caller's own requests, newest first."""
    return await service.list_requests(
        user.id, pagination, status=status, leave_type=leave_type, year=year,
    )


# ── POST /requests/{id}/cancel ──────────────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Withdraw one of the caller's PENDING requests."""
    return await service.cancel_request(request_id, user)


# ── GET /pending ────────────────────────────────────────────────────

@router.get("/pending", response_model=LeaveRequestListOut)
async def pending_requests(
    pagination: PaginationParams = Depends(),
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    """All PENDING requests, oldest first."""
    return await service.list_pending(pagination)


# ── GET /admin/requests ─────────────────────────────────────────────

@router.get("/admin/requests", response_model=LeaveRequestListOut)
async def all_requests(
    user_id: Optional[uuid.UUID] = Query(None),
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None, alias="type"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    pagination: PaginationParams = Depends(),
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    """Requests across all users, newest first."""
    return await service.list_all_requests(
        pagination, user_id=user_id, status=status, leave_type=leave_type, year=year,
    )


# ── GET /admin/balances ─────────────────────────────────────────────

@router.get("/admin/balances", response_model=EmployeeBalancesOut)
async def employee_balances(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    """Annual / TOIL / sick balances for every active user."""
    return await service.balances_overview(year or date.today().year)


# ── POST /requests/{id}/approve ─────────────────────────────────────

@router.post("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_request(
    request_id: uuid.UUID,
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.approve_request(request_id, admin)


# ── POST /requests/{id}/reject ──────────────────────────────────────

@router.post("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_request(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.reject_request(request_id, admin, body.reason)


# ── POST /bulk-approve ──────────────────────────────────────────────

@router.post("/bulk-approve", response_model=BulkDecisionOut)
@limiter.limit(BULK_RATE_LIMIT)
async def bulk_approve(
    request: Request,
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    """Approve every PENDING request. 409 if the pending set moves meanwhile."""
    return await service.bulk_approve_pending(admin)


# ── POST /bulk-reject ───────────────────────────────────────────────

@router.post("/bulk-reject", response_model=BulkDecisionOut)
@limiter.limit(BULK_RATE_LIMIT)
async def bulk_reject(
    request: Request,
    body: BulkRejectRequest,
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    """Reject every PENDING request. 409 if the pending set moves meanwhile."""
    return await service.bulk_reject_pending(admin, body.reason)


# ── GET /calendar ───────────────────────────────────────────────────

@router.get("/calendar", response_model=LeaveCalendarOut)
async def team_calendar(
    start: date = Query(...),
    end: date = Query(...),
    user: User = Depends(get_current_user),
    service: LeaveService = Depends(get_leave_service),
):
    """Approved and pending leave for everyone overlapping the range."""
    return await service.team_calendar(start, end)
