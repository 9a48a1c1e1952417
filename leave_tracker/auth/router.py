"""User router — profile, provisioning and balance corrections."""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_tracker.auth.dependencies import get_current_user, require_admin
from leave_tracker.auth.models import User
from leave_tracker.auth.schemas import BalanceCorrection, UserCreate, UserOut
from leave_tracker.auth.service import UserService
from leave_tracker.database import get_db
from leave_tracker.dependencies import get_leave_service
from leave_tracker.leave.schemas import LeaveBalancesOut
from leave_tracker.leave.service import LeaveService

router = APIRouter(prefix="", tags=["users"])


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    """Return the authenticated user's profile."""
    return user


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    body: UserCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Provision an account. Counters default to 32 annual / 3 sick / 0 TOIL."""
    return await UserService.create_user(
        db,
        email=body.email,
        name=body.name,
        role=body.role,
        annual_leave_balance=body.annual_leave_balance,
        sick_leave_balance=body.sick_leave_balance,
        toil_balance=body.toil_balance,
        actor_id=admin.id,
    )


# ── GET /{id}/balances ──────────────────────────────────────────────

@router.get("/{user_id}/balances", response_model=LeaveBalancesOut)
async def user_balances(
    user_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    admin: User = Depends(require_admin),
    service: LeaveService = Depends(get_leave_service),
):
    """Balances for any user (admin view)."""
    return await service.get_balance_summary(user_id, year or date.today().year)


# ── PUT /{id}/balances ──────────────────────────────────────────────

@router.put("/{user_id}/balances", response_model=UserOut)
async def correct_balances(
    user_id: uuid.UUID,
    body: BalanceCorrection,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Overwrite entitlement counters. Request history is not touched."""
    return await UserService.set_balances(
        db,
        user_id,
        actor_id=admin.id,
        reason=body.reason,
        annual_leave_balance=body.annual_leave_balance,
        sick_leave_balance=body.sick_leave_balance,
        toil_balance=body.toil_balance,
    )
