"""User service — account provisioning and entitlement corrections."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_tracker.auth.models import User
from leave_tracker.common.audit import AuditAction, AuditEntity, create_audit_entry
from leave_tracker.common.constants import ADMIN_ROLES, UserRole
from leave_tracker.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from leave_tracker.config import settings

logger = logging.getLogger(__name__)

_BALANCE_FIELDS = ("annual_leave_balance", "sick_leave_balance", "toil_balance")


def _snapshot(user: User) -> dict[str, Optional[str]]:
    return {
        f: (str(getattr(user, f)) if getattr(user, f) is not None else None)
        for f in _BALANCE_FIELDS
    }


class UserService:
    """Async user operations."""

    @staticmethod
    async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", user_id)
        return user

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User:
        result = await db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", email)
        return user

    @staticmethod
    async def create_user(
        db: AsyncSession,
        *,
        email: str,
        name: Optional[str] = None,
        role: UserRole = UserRole.user,
        annual_leave_balance: Optional[Decimal] = None,
        sick_leave_balance: Optional[Decimal] = None,
        toil_balance: Optional[Decimal] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> User:
        """Create an account with statutory default counters unless given."""
        email = email.strip().lower()
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar() is not None:
            raise ConflictError(
                detail=f"A user with email '{email}' already exists.",
                errors={"email": ["already registered"]},
            )

        user = User(
            email=email,
            name=name,
            role=role,
            annual_leave_balance=(
                annual_leave_balance
                if annual_leave_balance is not None
                else settings.DEFAULT_ANNUAL_LEAVE
            ),
            sick_leave_balance=(
                sick_leave_balance
                if sick_leave_balance is not None
                else settings.DEFAULT_SICK_LEAVE
            ),
            toil_balance=toil_balance if toil_balance is not None else Decimal("0"),
        )
        db.add(user)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type=AuditEntity.user,
            entity_id=user.id,
            actor_id=actor_id,
            new_values={"email": email, "role": role.value, **_snapshot(user)},
        )
        logger.info("Created user %s (%s)", email, role.value)
        return user

    @staticmethod
    async def set_balances(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID],
        reason: str,
        annual_leave_balance: Optional[Decimal] = None,
        sick_leave_balance: Optional[Decimal] = None,
        toil_balance: Optional[Decimal] = None,
    ) -> User:
        """Overwrite entitlement counters directly (admin correction).

        Request history is untouched; usage keeps being derived from it.
        """
        if toil_balance is not None and toil_balance < 0:
            raise ValidationException({"toil_balance": ["TOIL balance cannot be negative."]})

        result = await db.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", user_id)

        old = _snapshot(user)
        updates = {
            "annual_leave_balance": annual_leave_balance,
            "sick_leave_balance": sick_leave_balance,
            "toil_balance": toil_balance,
        }
        for field_name, value in updates.items():
            if value is not None:
                setattr(user, field_name, value)
        user.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.set_balance,
            entity_type=AuditEntity.user,
            entity_id=user.id,
            actor_id=actor_id,
            old_values=old,
            new_values={**_snapshot(user), "reason": reason},
        )
        logger.info("Balances for %s corrected by %s: %s", user.email, actor_id, reason)
        return user

    @staticmethod
    async def list_admin_emails(db: AsyncSession) -> Sequence[str]:
        result = await db.execute(
            select(User.email).where(
                User.role.in_(list(ADMIN_ROLES)),
                User.is_active.is_(True),
            )
        )
        return result.scalars().all()
