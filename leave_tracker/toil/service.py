"""TOIL service — accrual claims and admin adjustments.

Approving an entry credits ``users.toil_balance`` and snapshots the
before/after values on the entry, in the same transaction. Consumption by
TOIL leave requests is never written here; it is derived by the balance
calculator from approved requests.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_tracker.auth.models import User
from leave_tracker.common.audit import AuditAction, AuditEntity, create_audit_entry
from leave_tracker.common.exceptions import (
    FeatureDisabledException,
    NotFoundException,
    ValidationException,
)
from leave_tracker.common.features import FeatureFlags
from leave_tracker.common.pagination import PaginationParams, paginate
from leave_tracker.notifications.service import Notifier
from leave_tracker.toil.calculator import calculate_toil_hours
from leave_tracker.toil.models import ToilEntry
from leave_tracker.toil.schemas import ToilAdjustmentCreate, ToilEntryCreate

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToilService:
    """Async TOIL entry operations."""

    def __init__(
        self,
        db: AsyncSession,
        flags: FeatureFlags,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.db = db
        self.flags = flags
        self.notifier = notifier

    # ── Feature gates ──────────────────────────────────────────────

    def ensure_enabled(self) -> None:
        if not self.flags.toil_enabled:
            raise FeatureDisabledException("toil", "TOIL is not enabled.")

    def ensure_requests_enabled(self) -> None:
        self.ensure_enabled()
        if not self.flags.toil_request_enabled:
            raise FeatureDisabledException("toil", "TOIL requests are not enabled")

    def ensure_admin_enabled(self) -> None:
        self.ensure_enabled()
        if not self.flags.toil_admin_enabled:
            raise FeatureDisabledException("toil", "TOIL administration is not enabled.")

    # ── Helpers ────────────────────────────────────────────────────

    async def _get_for_update(self, entry_id: uuid.UUID) -> ToilEntry:
        result = await self.db.execute(
            select(ToilEntry)
            .where(ToilEntry.id == entry_id)
            .options(selectinload(ToilEntry.user))
            .with_for_update()
        )
        entry = result.scalars().first()
        if entry is None:
            raise NotFoundException("ToilEntry", entry_id)
        return entry

    async def _lock_user(self, user_id: uuid.UUID) -> User:
        result = await self.db.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", user_id)
        return user

    async def _credit(self, entry: ToilEntry, admin: User) -> None:
        """Increment the owner's TOIL counter by ``entry.hours`` and snapshot it."""
        user = await self._lock_user(entry.user_id)
        previous = Decimal(user.toil_balance or 0)
        new = previous + Decimal(entry.hours)
        now = _utcnow()

        user.toil_balance = new
        user.updated_at = now
        entry.approved = True
        entry.approved_by = admin.id
        entry.approved_at = now
        entry.previous_balance = previous
        entry.new_balance = new
        await self.db.flush()

    # ── Employee operations ────────────────────────────────────────

    async def create_entry(self, user: User, body: ToilEntryCreate) -> ToilEntry:
        """Record a claim; hours come from the scenario table."""
        self.ensure_requests_enabled()
        hours = calculate_toil_hours(
            body.scenario, body.travel_date, body.return_date, body.return_time,
        )
        if hours is None:
            raise ValidationException(
                {"return_time": ["Please enter a valid return time (HH:MM)."]}
            )

        entry = ToilEntry(
            user_id=user.id,
            travel_date=body.travel_date,
            scenario=body.scenario,
            return_date=body.return_date,
            return_time=body.return_time,
            hours=Decimal(hours),
            reason=body.reason,
            approved=False,
        )
        self.db.add(entry)
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action=AuditAction.create,
            entity_type=AuditEntity.toil_entry,
            entity_id=entry.id,
            actor_id=user.id,
            new_values={"scenario": body.scenario.value, "hours": hours},
        )
        await self.db.commit()
        logger.info("TOIL entry %s (%sh) logged by %s", entry.id, hours, user.email)
        return entry

    async def list_entries(self, user_id: uuid.UUID, pagination: PaginationParams):
        self.ensure_enabled()
        query = (
            select(ToilEntry)
            .where(ToilEntry.user_id == user_id)
            .order_by(ToilEntry.travel_date.desc())
        )
        return await paginate(self.db, query, pagination)

    # ── Admin operations ───────────────────────────────────────────

    async def list_pending(self, pagination: PaginationParams):
        self.ensure_admin_enabled()
        query = (
            select(ToilEntry)
            .where(ToilEntry.approved.is_(False), ToilEntry.approved_by.is_(None))
            .order_by(ToilEntry.created_at.asc())
        )
        return await paginate(self.db, query, pagination)

    async def approve_entry(self, entry_id: uuid.UUID, admin: User) -> ToilEntry:
        self.ensure_admin_enabled()
        entry = await self._get_for_update(entry_id)
        if not entry.is_pending:
            raise ValidationException({"entry": ["TOIL entry has already been processed."]})

        await self._credit(entry, admin)
        await create_audit_entry(
            self.db,
            action=AuditAction.approve,
            entity_type=AuditEntity.toil_entry,
            entity_id=entry.id,
            actor_id=admin.id,
            old_values={"toil_balance": str(entry.previous_balance)},
            new_values={"toil_balance": str(entry.new_balance), "hours": str(entry.hours)},
        )
        await self.db.commit()
        logger.info(
            "TOIL entry %s approved by %s: balance %s -> %s",
            entry.id, admin.email, entry.previous_balance, entry.new_balance,
        )

        if self.notifier is not None:
            await self.notifier.toil_entry_decided(entry, entry.user)
        return entry

    async def reject_entry(self, entry_id: uuid.UUID, admin: User, reason: str) -> ToilEntry:
        self.ensure_admin_enabled()
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException({"reason": ["A rejection reason is required."]})

        entry = await self._get_for_update(entry_id)
        if not entry.is_pending:
            raise ValidationException({"entry": ["TOIL entry has already been processed."]})

        entry.approved = False
        entry.approved_by = admin.id
        entry.approved_at = _utcnow()
        entry.adjustment_reason = reason
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action=AuditAction.reject,
            entity_type=AuditEntity.toil_entry,
            entity_id=entry.id,
            actor_id=admin.id,
            new_values={"reason": reason},
        )
        await self.db.commit()
        logger.info("TOIL entry %s rejected by %s", entry.id, admin.email)

        if self.notifier is not None:
            await self.notifier.toil_entry_decided(entry, entry.user)
        return entry

    async def grant_adjustment(self, admin: User, body: ToilAdjustmentCreate) -> ToilEntry:
        """Credit hours outside the scenario table; the entry is born approved."""
        self.ensure_admin_enabled()
        await self._lock_user(body.user_id)

        entry = ToilEntry(
            user_id=body.user_id,
            travel_date=body.effective_date or date.today(),
            scenario=None,
            hours=body.hours,
            reason=body.reason,
            adjustment_reason=body.reason,
            approved=False,
        )
        self.db.add(entry)
        await self.db.flush()
        await self._credit(entry, admin)

        await create_audit_entry(
            self.db,
            action=AuditAction.adjust,
            entity_type=AuditEntity.toil_entry,
            entity_id=entry.id,
            actor_id=admin.id,
            old_values={"toil_balance": str(entry.previous_balance)},
            new_values={
                "toil_balance": str(entry.new_balance),
                "hours": str(entry.hours),
                "reason": body.reason,
            },
        )
        await self.db.commit()
        logger.info(
            "TOIL adjustment of %sh for user %s by %s", body.hours, body.user_id, admin.email,
        )
        return entry
