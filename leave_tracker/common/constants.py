"""Enums and constants for the leave tracker — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"
    tech_admin = "tech_admin"
    owner = "owner"


ADMIN_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.admin, UserRole.tech_admin, UserRole.owner}
)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    annual = "annual"
    toil = "toil"
    sick = "sick"


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# ── TOIL ────────────────────────────────────────────────────────────

class ToilScenario(str, enum.Enum):
    local_show = "local_show"
    working_day_panel = "working_day_panel"
    overnight_day_off = "overnight_day_off"
    overnight_working_day = "overnight_working_day"


# ── Defaults ────────────────────────────────────────────────────────

DEFAULT_ANNUAL_LEAVE = Decimal("32")
DEFAULT_SICK_LEAVE = Decimal("3")
DEFAULT_TOIL_BALANCE = Decimal("0")

MIN_BULK_REJECTION_REASON_LENGTH = 10
MAX_REJECTION_REASON_LENGTH = 500
LARGE_BULK_OPERATION = 50

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
