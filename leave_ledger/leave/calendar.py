"""Business-day predicate backed by the company calendar table."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import WEEKLY_OFF_DAYS
from leave_ledger.leave.models import CompanyCalendarDay


class CalendarService(Protocol):
    async def is_business_day(
        self, company_id: Optional[uuid.UUID], day: date,
    ) -> bool: ...


class DatabaseCalendarService:
    """Explicit calendar rows win; otherwise Monday–Friday are business days."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        weekly_offs: frozenset[int] = WEEKLY_OFF_DAYS,
    ) -> None:
        self._db = db
        self._weekly_offs = weekly_offs

    async def is_business_day(
        self, company_id: Optional[uuid.UUID], day: date,
    ) -> bool:
        if company_id is not None:
            result = await self._db.execute(
                select(CompanyCalendarDay.is_business_day).where(
                    CompanyCalendarDay.company_id == company_id,
                    CompanyCalendarDay.calendar_date == day,
                )
            )
            override = result.scalar_one_or_none()
            if override is not None:
                return override
        return day.weekday() not in self._weekly_offs
