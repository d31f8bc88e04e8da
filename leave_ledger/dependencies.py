"""Shared FastAPI dependencies — wire the ledger service and its collaborators."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.audit import AuditSink, DatabaseAuditSink
from leave_ledger.database import async_session_factory, get_db
from leave_ledger.leave.calendar import CalendarService, DatabaseCalendarService
from leave_ledger.leave.policy import DatabasePolicyStore, PolicyStore
from leave_ledger.leave.repository import LedgerRepository
from leave_ledger.leave.service import LeaveLedgerService


async def get_policy_store(db: AsyncSession = Depends(get_db)) -> PolicyStore:
    return DatabasePolicyStore(db)


async def get_calendar_service(db: AsyncSession = Depends(get_db)) -> CalendarService:
    return DatabaseCalendarService(db)


async def get_audit_sink() -> AuditSink:
    """Audit rows are written in their own session, outside the ledger transaction."""
    return DatabaseAuditSink(async_session_factory)


async def get_ledger_service(
    db: AsyncSession = Depends(get_db),
    policies: PolicyStore = Depends(get_policy_store),
    calendar: CalendarService = Depends(get_calendar_service),
    audit: AuditSink = Depends(get_audit_sink),
) -> LeaveLedgerService:
    return LeaveLedgerService(LedgerRepository(db), policies, calendar, audit)
