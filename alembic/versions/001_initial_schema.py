"""001 – Initial schema: users, leave requests, TOIL entries, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["user", "admin", "tech_admin", "owner"]),
    ("leave_type", ["annual", "toil", "sick"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    (
        "toil_scenario",
        [
            "local_show",
            "working_day_panel",
            "overnight_day_off",
            "overnight_working_day",
        ],
    ),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            email                 VARCHAR(255) NOT NULL UNIQUE,
            name                  VARCHAR(255),
            role                  user_role NOT NULL DEFAULT 'user',
            is_active             BOOLEAN DEFAULT TRUE,
            annual_leave_balance  NUMERIC(6,2) DEFAULT 32,
            sick_leave_balance    NUMERIC(6,2) DEFAULT 3,   -- may go negative
            toil_balance          NUMERIC(6,2) DEFAULT 0,   -- hours
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            updated_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id          UUID NOT NULL REFERENCES users(id),
            type             leave_type,  -- NULL on legacy rows, read as annual
            start_date       DATE NOT NULL,
            end_date         DATE NOT NULL,
            hours            NUMERIC(6,2),
            status           leave_status NOT NULL DEFAULT 'pending',
            comments         TEXT,
            approved_by      UUID REFERENCES users(id),
            approved_at      TIMESTAMPTZ,
            decision_reason  TEXT,
            cancelled_at     TIMESTAMPTZ,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_requests_date_order CHECK (start_date <= end_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_user_status ON leave_requests (user_id, status)"
    )
    op.execute(
        "CREATE INDEX ix_leave_requests_dates ON leave_requests (start_date, end_date)"
    )

    # ── 3. toil_entries ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE toil_entries (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id            UUID NOT NULL REFERENCES users(id),
            date               DATE NOT NULL,
            scenario           toil_scenario,  -- NULL for admin adjustments
            return_date        DATE,
            return_time        VARCHAR(5),
            hours              NUMERIC(6,2) NOT NULL,
            reason             TEXT,
            approved           BOOLEAN NOT NULL DEFAULT FALSE,
            approved_by        UUID REFERENCES users(id),
            approved_at        TIMESTAMPTZ,
            previous_balance   NUMERIC(6,2),
            new_balance        NUMERIC(6,2),
            adjustment_reason  TEXT,
            created_at         TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_toil_entries_user_approved ON toil_entries (user_id, approved)"
    )

    # ── 4. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES users(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute(
        "CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)"
    )
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "toil_entries",
        "leave_requests",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
