"""Audit trail for leave decisions, TOIL credits and balance corrections.

Rows are append-only. Every state change that can move a balance writes one
entry in the same transaction as the change itself.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, select, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from leave_tracker.database import Base


class AuditAction(str, enum.Enum):
    create = "create"
    approve = "approve"
    reject = "reject"
    cancel = "cancel"
    bulk_approve = "bulk_approve"
    bulk_reject = "bulk_reject"
    adjust = "adjust"
    set_balance = "set_balance"


class AuditEntity(str, enum.Enum):
    user = "user"
    leave_request = "leave_request"
    toil_entry = "toil_entry"


class AuditTrail(Base):
    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # NULL for bulk decisions; the affected ids are listed in new_values
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("NOW()"),
    )

    __table_args__ = (
        Index("ix_audit_trail_actor_id", "actor_id"),
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        Index("ix_audit_trail_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditTrail {self.action} {self.entity_type}/{self.entity_id} by {self.actor_id}>"


def _value(item: Union[enum.Enum, str]) -> str:
    return item.value if isinstance(item, enum.Enum) else item


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: Union[AuditAction, str],
    entity_type: Union[AuditEntity, str],
    entity_id: Optional[uuid.UUID] = None,
    actor_id: Optional[uuid.UUID] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditTrail:
    """Add and flush one entry; the caller owns the commit.

    ``actor_id`` is None for changes made by maintenance scripts.
    """
    entry = AuditTrail(
        actor_id=actor_id,
        action=_value(action),
        entity_type=_value(entity_type),
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
    )
    session.add(entry)
    await session.flush()
    return entry


async def audit_history(
    session: AsyncSession,
    entity_type: Union[AuditEntity, str],
    entity_id: uuid.UUID,
) -> Sequence[AuditTrail]:
    """Entries for one entity, oldest first."""
    result = await session.execute(
        select(AuditTrail)
        .where(
            AuditTrail.entity_type == _value(entity_type),
            AuditTrail.entity_id == entity_id,
        )
        .order_by(AuditTrail.created_at.asc())
    )
    return result.scalars().all()
