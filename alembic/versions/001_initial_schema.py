"""001 – Initial schema: employees, leave requests, balances, holidays, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:30:00.000000+00:00
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
    (
        "leave_type",
        [
            "vacation",
            "sick",
            "personal",
            "emergency",
            "maternity",
            "paternity",
            "bereavement",
            "compensatory",
            "unpaid",
        ],
    ),
    ("leave_status", ["pending", "approved", "auto_approved", "rejected", "cancelled"]),
    ("leave_duration", ["full_day", "half_day"]),
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
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code  VARCHAR(20)  NOT NULL UNIQUE,
            name           VARCHAR(200) NOT NULL,
            email          VARCHAR(255) NOT NULL UNIQUE,
            department     VARCHAR(100),
            position       VARCHAR(100),
            joining_date   DATE NOT NULL,
            manager_id     UUID REFERENCES employees(id),
            is_hr          BOOLEAN DEFAULT FALSE,
            is_active      BOOLEAN DEFAULT TRUE,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_employee_not_own_manager
                CHECK (manager_id IS NULL OR manager_id <> id)
        )
    """)
    op.execute("CREATE INDEX ix_employees_manager_id ON employees(manager_id)")
    op.execute("CREATE INDEX ix_employees_department ON employees(department)")

    # ── 2. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            holiday_date  DATE NOT NULL UNIQUE,
            name          VARCHAR(200) NOT NULL,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            leave_type   leave_type NOT NULL,
            year         INTEGER NOT NULL,
            total_days   NUMERIC(5,1) NOT NULL DEFAULT 0,
            used_days    NUMERIC(5,1) NOT NULL DEFAULT 0,
            created_at   TIMESTAMPTZ DEFAULT NOW(),
            updated_at   TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type, year),
            CONSTRAINT ck_leave_balance_used_non_negative CHECK (used_days >= 0),
            CONSTRAINT ck_leave_balance_within_total CHECK (used_days <= total_days)
        )
    """)

    # ── 4. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_code      VARCHAR(20) NOT NULL UNIQUE,
            employee_id       UUID NOT NULL REFERENCES employees(id),
            leave_type        leave_type NOT NULL,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            duration          leave_duration DEFAULT 'full_day',
            total_days        NUMERIC(5,1) NOT NULL,
            charged_days      NUMERIC(5,1) NOT NULL DEFAULT 0,
            reason            TEXT,
            comments          TEXT,
            status            leave_status DEFAULT 'pending',
            is_emergency      BOOLEAN DEFAULT FALSE,
            is_backdated      BOOLEAN DEFAULT FALSE,
            approved_by       UUID REFERENCES employees(id),
            approved_at       TIMESTAMPTZ,
            rejection_reason  TEXT,
            cancelled_at      TIMESTAMPTZ,
            version           INTEGER NOT NULL DEFAULT 0,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (end_date >= start_date),
            CONSTRAINT ck_leave_request_total_days CHECK (total_days >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_employee_dates
            ON leave_requests(employee_id, start_date, end_date)
    """)
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests(status)")

    # ── 5. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity   ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action   ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "leave_requests",
        "leave_balances",
        "holidays",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
