"""Shared FastAPI dependencies — flag snapshot and service wiring."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leave_tracker.common.features import FeatureFlags
from leave_tracker.config import settings
from leave_tracker.database import get_db
from leave_tracker.leave.service import LeaveService
from leave_tracker.notifications.service import Notifier, get_notifier
from leave_tracker.toil.service import ToilService


def get_feature_flags() -> FeatureFlags:
    return settings.feature_flags


def get_coverage_emails() -> frozenset[str]:
    return settings.coverage_emails


def get_leave_service(
    db: AsyncSession = Depends(get_db),
    flags: FeatureFlags = Depends(get_feature_flags),
    coverage_emails: frozenset[str] = Depends(get_coverage_emails),
    notifier: Notifier = Depends(get_notifier),
) -> LeaveService:
    return LeaveService(db, flags, coverage_emails, notifier)


def get_toil_service(
    db: AsyncSession = Depends(get_db),
    flags: FeatureFlags = Depends(get_feature_flags),
    notifier: Notifier = Depends(get_notifier),
) -> ToilService:
    return ToilService(db, flags, notifier)
