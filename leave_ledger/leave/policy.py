"""Leave policy lookup and the pre-allocation policy gate."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import MinUnit
from leave_ledger.common.exceptions import BlackoutDateError, ClosedDayError
from leave_ledger.config import settings
from leave_ledger.leave.calendar import CalendarService
from leave_ledger.leave.models import LeavePolicy

logger = logging.getLogger(__name__)


class LeavePolicySnapshot(BaseModel):
    """The parts of a leave policy the ledger enforces."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    business_day_only: bool = True
    blackout_dates: frozenset[date] = frozenset()
    allow_negative: bool = False
    min_unit: MinUnit = MinUnit.one_hour
    day_hours: Decimal = Field(
        default_factory=lambda: Decimal(str(settings.DEFAULT_HOURS_PER_DAY))
    )


DEFAULT_POLICY = LeavePolicySnapshot()


class PolicyStore(Protocol):
    async def get_policy(
        self, company_id: Optional[uuid.UUID], leave_type_id: uuid.UUID,
    ) -> LeavePolicySnapshot: ...


class DatabasePolicyStore:
    """Company row first, then the company-less default row, then built-in defaults."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_policy(
        self, company_id: Optional[uuid.UUID], leave_type_id: uuid.UUID,
    ) -> LeavePolicySnapshot:
        query = select(LeavePolicy).where(
            LeavePolicy.leave_type_id == leave_type_id,
            LeavePolicy.is_active.is_(True),
        )
        if company_id is not None:
            query = query.where(
                (LeavePolicy.company_id == company_id)
                | LeavePolicy.company_id.is_(None)
            )
        else:
            query = query.where(LeavePolicy.company_id.is_(None))

        rows = (await self._db.execute(query)).scalars().all()
        # Company-specific row sorts ahead of the default row
        rows = sorted(rows, key=lambda p: p.company_id is None)
        if not rows:
            return DEFAULT_POLICY
        return LeavePolicySnapshot.model_validate(rows[0])


async def check_policy(
    needs: Mapping[date, Decimal],
    policy: LeavePolicySnapshot,
    calendar: CalendarService,
    company_id: Optional[uuid.UUID] = None,
) -> None:
    """Reject the first date (ascending) that is closed or blacked out.

    Raises:
        ClosedDayError: ``business_day_only`` and the calendar says closed.
        BlackoutDateError: the date is in ``blackout_dates``.
    """
    for day in sorted(needs):
        if policy.business_day_only and not await calendar.is_business_day(company_id, day):
            logger.warning("Rejected closed day %s (company=%s)", day, company_id)
            raise ClosedDayError(day)
        if day in policy.blackout_dates:
            logger.warning("Rejected blackout date %s (company=%s)", day, company_id)
            raise BlackoutDateError(day)
