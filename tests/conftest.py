"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import smtplib
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_tracker.common.constants import LeaveStatus, LeaveType, UserRole
from leave_tracker.common.features import FeatureFlags
from leave_tracker.config import settings
from leave_tracker.database import Base, get_db
from leave_tracker.dependencies import get_coverage_emails, get_feature_flags
from leave_tracker.main import create_app
from leave_tracker.notifications.service import Notifier, get_notifier

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import leave_tracker.auth.models  # noqa: F401
import leave_tracker.common.audit  # noqa: F401
import leave_tracker.leave.models  # noqa: F401
import leave_tracker.toil.models  # noqa: F401

from leave_tracker.auth.models import User
from leave_tracker.leave.models import LeaveRequest

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

ALL_FLAGS = FeatureFlags(
    toil_enabled=True,
    toil_request_enabled=True,
    toil_admin_enabled=True,
    sick_leave_enabled=True,
)
NO_FLAGS = FeatureFlags()

COVERAGE_EMAILS = frozenset({"agent.one@example.com", "agent.two@example.com"})

# Mon 2 March 2026 → Fri 6 March 2026; the weekend follows.
MONDAY = date(2026, 3, 2)
FRIDAY = date(2026, 3, 6)
SATURDAY = date(2026, 3, 7)
SUNDAY = date(2026, 3, 8)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_tracker.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Email doubles ───────────────────────────────────────────────────

class RecordingSender:
    """EmailSender that keeps every message in memory."""

    def __init__(self) -> None:
        self.outbox: list[tuple[str, str, str]] = []

    def send(self, to_addr: str, subject: str, body: str) -> None:
        self.outbox.append((to_addr, subject, body))


class FailingSender:
    """EmailSender whose relay is always down."""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, to_addr: str, subject: str, body: str) -> None:
        self.attempts += 1
        raise smtplib.SMTPServerDisconnected("relay unavailable")


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def notifier(sender) -> Notifier:
    return Notifier(sender)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(notifier):
    """Create a fresh app instance with DB, flags and email overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_feature_flags] = lambda: ALL_FLAGS
    application.dependency_overrides[get_coverage_emails] = lambda: COVERAGE_EMAILS
    application.dependency_overrides[get_notifier] = lambda: notifier
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    name: Optional[str] = None,
    role: UserRole = UserRole.user,
    annual_leave_balance: Optional[Decimal] = Decimal("32"),
    sick_leave_balance: Optional[Decimal] = Decimal("3"),
    toil_balance: Optional[Decimal] = Decimal("0"),
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"user.{uuid.uuid4().hex[:8]}@example.com",
        name=name,
        role=role,
        is_active=True,
        annual_leave_balance=annual_leave_balance,
        sick_leave_balance=sick_leave_balance,
        toil_balance=toil_balance,
    )
    db.add(user)
    await db.commit()
    return user


async def make_request(
    db: AsyncSession,
    user: User,
    *,
    start: date = MONDAY,
    end: date = FRIDAY,
    type: Optional[LeaveType] = LeaveType.annual,
    status: LeaveStatus = LeaveStatus.pending,
    hours: Optional[Decimal] = None,
) -> LeaveRequest:
    request = LeaveRequest(
        id=uuid.uuid4(),
        user_id=user.id,
        type=type,
        start_date=start,
        end_date=end,
        status=status,
        hours=hours,
    )
    db.add(request)
    await db.commit()
    return request


@pytest.fixture
async def employee(db) -> User:
    return await make_user(db, email="jane.doe@example.com", name="Jane Doe")


@pytest.fixture
async def admin(db) -> User:
    return await make_user(
        db, email="boss@example.com", name="The Boss", role=UserRole.admin,
    )


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    role: UserRole = UserRole.user,
    expired: bool = False,
) -> str:
    """Mint a token the way the identity provider would."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def auth_headers(employee) -> dict[str, str]:
    return bearer(employee)


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return bearer(admin)
