"""TOIL router — scenario calculator, accrual entries, admin decisions.

Every endpoint answers 422 while TOIL is switched off; admin endpoints also
need the TOIL admin flag.
"""

import uuid

from fastapi import APIRouter, Depends

from leave_tracker.auth.dependencies import get_current_user, require_admin
from leave_tracker.auth.models import User
from leave_tracker.common.pagination import PaginatedResponse, PaginationParams
from leave_tracker.dependencies import get_toil_service
from leave_tracker.toil.calculator import SCENARIOS, calculate_toil_hours, toil_display_text
from leave_tracker.toil.schemas import (
    ScenarioOut,
    ToilAdjustmentCreate,
    ToilCalculateOut,
    ToilCalculateRequest,
    ToilEntryCreate,
    ToilEntryOut,
    ToilRejectRequest,
)
from leave_tracker.toil.service import ToilService

router = APIRouter(prefix="", tags=["toil"])


def _page(rows, meta) -> PaginatedResponse[ToilEntryOut]:
    return PaginatedResponse[ToilEntryOut](
        data=[ToilEntryOut.model_validate(r) for r in rows], meta=meta,
    )


# ── GET /scenarios ──────────────────────────────────────────────────

@router.get("/scenarios", response_model=list[ScenarioOut])
async def scenarios(
    user: User = Depends(get_current_user),
    service: ToilService = Depends(get_toil_service),
):
    service.ensure_enabled()
    return [
        ScenarioOut(
            scenario=scenario,
            label=info.label,
            description=info.description,
            help_text=info.help_text,
            contract_ref=info.contract_ref,
            requires_return_date=info.requires_return_date,
            requires_return_time=info.requires_return_time,
        )
        for scenario, info in SCENARIOS.items()
    ]


# ── POST /calculate ─────────────────────────────────────────────────

@router.post("/calculate", response_model=ToilCalculateOut)
async def calculate(
    body: ToilCalculateRequest,
    user: User = Depends(get_current_user),
    service: ToilService = Depends(get_toil_service),
):
    """Price a trip without saving anything. ``hours`` is null when undecidable."""
    service.ensure_enabled()
    hours = calculate_toil_hours(
        body.scenario, body.travel_date, body.return_date, body.return_time,
    )
    return ToilCalculateOut(
        hours=hours,
        display_text=toil_display_text(hours, body.scenario),
    )


# ── POST /entries ───────────────────────────────────────────────────

@router.post("/entries", response_model=ToilEntryOut, status_code=201)
async def create_entry(
    body: ToilEntryCreate,
    user: User = Depends(get_current_user),
    service: ToilService = Depends(get_toil_service),
):
    return await service.create_entry(user, body)


# ── GET /entries ────────────────────────────────────────────────────

@router.get("/entries", response_model=PaginatedResponse[ToilEntryOut])
async def my_entries(
    pagination: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    service: ToilService = Depends(get_toil_service),
):
    rows, meta = await service.list_entries(user.id, pagination)
    return _page(rows, meta)


# ── GET /pending ────────────────────────────────────────────────────

@router.get("/pending", response_model=PaginatedResponse[ToilEntryOut])
async def pending_entries(
    pagination: PaginationParams = Depends(),
    admin: User = Depends(require_admin),
    service: ToilService = Depends(get_toil_service),
):
    rows, meta = await service.list_pending(pagination)
    return _page(rows, meta)


# ── POST /entries/{id}/approve ──────────────────────────────────────

@router.post("/entries/{entry_id}/approve", response_model=ToilEntryOut)
async def approve_entry(
    entry_id: uuid.UUID,
    admin: User = Depends(require_admin),
    service: ToilService = Depends(get_toil_service),
):
    """Approve a claim and credit the hours to the owner's TOIL balance."""
    return await service.approve_entry(entry_id, admin)


# ── POST /entries/{id}/reject ───────────────────────────────────────

@router.post("/entries/{entry_id}/reject", response_model=ToilEntryOut)
async def reject_entry(
    entry_id: uuid.UUID,
    body: ToilRejectRequest,
    admin: User = Depends(require_admin),
    service: ToilService = Depends(get_toil_service),
):
    return await service.reject_entry(entry_id, admin, body.reason)


# ── POST /adjustments ───────────────────────────────────────────────

@router.post("/adjustments", response_model=ToilEntryOut, status_code=201)
async def grant_adjustment(
    body: ToilAdjustmentCreate,
    admin: User = Depends(require_admin),
    service: ToilService = Depends(get_toil_service),
):
    """Credit TOIL hours directly; recorded as an already-approved entry."""
    return await service.grant_adjustment(admin, body)
