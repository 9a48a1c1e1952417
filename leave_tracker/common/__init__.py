"""Common module — shared utilities for the leave tracker."""

from leave_tracker.common.constants import (
    ADMIN_ROLES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    LeaveStatus,
    LeaveType,
    ToilScenario,
    UserRole,
)
from leave_tracker.common.exceptions import (
    AppException,
    ConflictError,
    FeatureDisabledException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from leave_tracker.common.features import FeatureFlags

__all__ = [
    # Constants / Enums
    "ADMIN_ROLES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "LeaveStatus",
    "LeaveType",
    "ToilScenario",
    "UserRole",
    # Exceptions
    "AppException",
    "ConflictError",
    "FeatureDisabledException",
    "ForbiddenException",
    "InvalidTransitionException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Feature flags
    "FeatureFlags",
]
