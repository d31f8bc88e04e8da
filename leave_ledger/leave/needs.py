"""Request detail lines → per-date hour demand.

A detail line is booked in days, half days or hours. Each line is
normalised to hours, rounded to the policy's minimum unit, and summed onto
the local calendar date of its start. Lines that cross midnight are not
split; they belong to the date they start on.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from leave_ledger.common.constants import HOURS_QUANTUM, LeaveUnit, MinUnit
from leave_ledger.common.exceptions import ValidationException
from leave_ledger.config import settings
from leave_ledger.leave.schemas import LeaveDetailIn

logger = logging.getLogger(__name__)

_WHOLE_HOUR = Decimal("1")


def detail_hours(unit: LeaveUnit, quantity: Decimal, hours_per_day: Decimal) -> Decimal:
    """Convert a quantity in `unit` to hours."""
    if unit == LeaveUnit.hour:
        return quantity
    if unit == LeaveUnit.half:
        return (hours_per_day / 2) * quantity
    return hours_per_day * quantity


def round_to_min_unit(hours: Decimal, min_unit: MinUnit) -> Decimal:
    """Round to whole hours (half-up) for a 1h policy.

    Coarser units keep their fraction, cut to the ledger's storage scale so
    the planned hours are exactly the hours written.
    """
    if min_unit == MinUnit.one_hour:
        return hours.quantize(_WHOLE_HOUR, rounding=ROUND_HALF_UP)
    return hours.quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def _is_aware(ts: datetime) -> bool:
    return ts.utcoffset() is not None


def local_date(ts: datetime, tz: ZoneInfo) -> date:
    """Calendar date of `ts` in `tz`. Naive timestamps are taken as local already."""
    if not _is_aware(ts):
        return ts.date()
    return ts.astimezone(tz).date()


def aggregate_needs(
    details: Sequence[LeaveDetailIn],
    *,
    hours_per_day: Decimal,
    policy_min_unit: MinUnit,
    tz: Optional[ZoneInfo] = None,
) -> dict[date, Decimal]:
    """Build the ``date → hours`` demand map for a request.

    Raises:
        ValidationException: empty request (``empty_request``), a line whose
            start is not before its end, or that mixes an offset-aware and a
            naive timestamp (``invalid_range``), or a line that
            rounds to zero hours (``zero_hours``).
    """
    if not details:
        raise ValidationException(
            {"details": ["At least one detail line is required."]},
            reason="empty_request",
        )

    tz = tz or ZoneInfo(settings.TIMEZONE)
    hours_per_day = Decimal(hours_per_day)
    by_date: dict[date, Decimal] = {}

    for i, line in enumerate(details):
        if _is_aware(line.start_at) != _is_aware(line.end_at):
            raise ValidationException(
                {f"details.{i}.end_at": [
                    "start_at and end_at must both carry a UTC offset, or neither."
                ]},
                reason="invalid_range",
            )
        if line.start_at >= line.end_at:
            raise ValidationException(
                {f"details.{i}.start_at": ["start_at must be before end_at."]},
                reason="invalid_range",
            )

        hours = round_to_min_unit(
            detail_hours(line.unit, Decimal(line.quantity), hours_per_day),
            policy_min_unit,
        )
        if hours <= 0:
            raise ValidationException(
                {f"details.{i}.quantity": [
                    "Rounded hours must be greater than zero; "
                    "check the quantity and unit."
                ]},
                reason="zero_hours",
            )

        day = local_date(line.start_at, tz)
        by_date[day] = by_date.get(day, Decimal("0")) + hours

    logger.debug("Aggregated %d detail lines into %d dates", len(details), len(by_date))
    return dict(sorted(by_date.items()))
