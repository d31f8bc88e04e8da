"""001 – Leave ledger schema: grants, consumptions, policies, calendar, audit.

Revision ID: 001_ledger_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000+09:00
"""

from alembic import op

# Revision identifiers
revision = "001_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("consumption_state", ["hold", "confirmed", "released", "reversed"]),
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
    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. leave_grants ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_grants (
            id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id        UUID NOT NULL,
            leave_type_id  UUID NOT NULL,
            quantity       NUMERIC(10, 4) NOT NULL,
            granted_on     DATE NOT NULL,
            expires_on     DATE,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_grant_quantity CHECK (quantity >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_grants_owner
            ON leave_grants (user_id, leave_type_id, granted_on)
    """)

    # ── 2. leave_consumptions ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_consumptions (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            grant_id     UUID NOT NULL REFERENCES leave_grants(id),
            request_id   UUID NOT NULL,
            consumed_on  DATE NOT NULL,
            quantity     NUMERIC(10, 4) NOT NULL,
            state        consumption_state NOT NULL,
            reason       TEXT,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_leave_consumption_quantity CHECK (quantity > 0)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_consumptions_request
            ON leave_consumptions (request_id)
    """)
    op.execute("""
        CREATE INDEX ix_leave_consumptions_grant_state
            ON leave_consumptions (grant_id, state)
    """)

    # ── 3. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            company_id         UUID,
            leave_type_id      UUID NOT NULL,
            business_day_only  BOOLEAN DEFAULT TRUE,
            blackout_dates     JSONB NOT NULL DEFAULT '[]'::jsonb,
            allow_negative     BOOLEAN DEFAULT FALSE,
            min_unit           VARCHAR(4) NOT NULL DEFAULT '1h',
            day_hours          NUMERIC(4, 2) NOT NULL DEFAULT 8,
            is_active          BOOLEAN DEFAULT TRUE,
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_policy_company_type UNIQUE (company_id, leave_type_id),
            CONSTRAINT ck_leave_policy_min_unit CHECK (min_unit IN ('1h', '0.5d', '1d'))
        )
    """)
    # One company-less default row per leave type
    op.execute("""
        CREATE UNIQUE INDEX uq_leave_policy_default_type
            ON leave_policies (leave_type_id)
            WHERE company_id IS NULL
    """)

    # ── 4. company_calendar_days ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE company_calendar_days (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            company_id       UUID NOT NULL,
            calendar_date    DATE NOT NULL,
            is_business_day  BOOLEAN NOT NULL,
            note             TEXT,
            CONSTRAINT uq_company_calendar_day UNIQUE (company_id, calendar_date)
        )
    """)

    # ── 5. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail (action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "company_calendar_days",
        "leave_policies",
        "leave_consumptions",
        "leave_grants",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
