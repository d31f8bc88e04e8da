"""Shared test fixtures — async DB, client, ledger service, factories.

Reusable across all test modules (needs, policy, allocation, ledger, API).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_ledger.common.audit import AuditEvent
from leave_ledger.database import Base, get_db
from leave_ledger.dependencies import get_audit_sink
from leave_ledger.leave.models import LeaveGrant, LeavePolicy
from leave_ledger.leave.policy import DatabasePolicyStore
from leave_ledger.leave.repository import LedgerRepository
from leave_ledger.leave.service import LeaveLedgerService
from leave_ledger.main import create_app

# Import ALL model modules so every table is on Base.metadata
import leave_ledger.common.audit  # noqa: F401
import leave_ledger.leave.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

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

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


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
    from leave_ledger.common.rate_limit import limiter
    try:
        if hasattr(limiter, '_storage'):
            limiter._storage.reset()
    except Exception:
        pass
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ── Collaborator fakes ──────────────────────────────────────────────

class FakeCalendar:
    """Business days are Mon–Fri unless a date is listed in `closed`."""

    def __init__(self, closed: Optional[set[date]] = None) -> None:
        self.closed = closed or set()
        self.calls: list[date] = []

    async def is_business_day(self, company_id, day: date) -> bool:
        self.calls.append(day)
        return day.weekday() < 5 and day not in self.closed


class RecordingAuditSink:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
async def app(audit_sink):
    """Create a fresh app instance with DB and audit dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_audit_sink] = lambda: audit_sink
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


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def service(db, calendar, audit_sink) -> LeaveLedgerService:
    """Ledger service over the test session with fake calendar and audit sink."""
    return LeaveLedgerService(
        LedgerRepository(db), DatabasePolicyStore(db), calendar, audit_sink,
    )


# ── Model factories ─────────────────────────────────────────────────

USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
LEAVE_TYPE_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


async def seed_grant(
    db: AsyncSession,
    *,
    quantity: str = "10",
    granted_on: date = date(2024, 1, 1),
    expires_on: Optional[date] = None,
    user_id: uuid.UUID = USER_ID,
    leave_type_id: uuid.UUID = LEAVE_TYPE_ID,
    grant_id: Optional[uuid.UUID] = None,
) -> LeaveGrant:
    """Insert and commit a grant (committed so a failed ledger call cannot roll it back)."""
    grant = LeaveGrant(
        id=grant_id or uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        quantity=Decimal(quantity),
        granted_on=granted_on,
        expires_on=expires_on,
        created_at=datetime.now(timezone.utc),
    )
    db.add(grant)
    await db.commit()
    return grant


async def seed_policy(
    db: AsyncSession,
    *,
    company_id: Optional[uuid.UUID] = None,
    leave_type_id: uuid.UUID = LEAVE_TYPE_ID,
    business_day_only: bool = True,
    blackout_dates: Optional[list[str]] = None,
    allow_negative: bool = False,
    min_unit: str = "1h",
    day_hours: str = "8",
) -> LeavePolicy:
    policy = LeavePolicy(
        id=uuid.uuid4(),
        company_id=company_id,
        leave_type_id=leave_type_id,
        business_day_only=business_day_only,
        blackout_dates=blackout_dates or [],
        allow_negative=allow_negative,
        min_unit=min_unit,
        day_hours=Decimal(day_hours),
        is_active=True,
    )
    db.add(policy)
    await db.commit()
    return policy


def detail(
    day: date,
    *,
    unit: str = "hour",
    quantity: str = "8",
    start_hour: int = 9,
    end_hour: int = 18,
) -> dict:
    """A detail line on `day` as the API would receive it."""
    return {
        "start_at": datetime(day.year, day.month, day.day, start_hour).isoformat(),
        "end_at": datetime(day.year, day.month, day.day, end_hour).isoformat(),
        "unit": unit,
        "quantity": quantity,
    }
