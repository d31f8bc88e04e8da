"""Leave ledger Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *In / *Request  → request bodies (write)
  - *Out            → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leave_ledger.common.constants import (
    AllocationMode,
    ConsumptionState,
    DecisionAction,
    LeaveUnit,
    MinUnit,
)


# ═════════════════════════════════════════════════════════════════════
# Allocation — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveDetailIn(BaseModel):
    """One request detail line: a time range booked in a unit."""

    start_at: datetime
    end_at: datetime
    unit: LeaveUnit
    quantity: Decimal = Field(
        ..., gt=0, decimal_places=4, description="Amount in `unit`, e.g. day=1, hour=3"
    )


class AllocateRequest(BaseModel):
    """Payload for allocating a request's hours against the user's grants."""

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    request_id: uuid.UUID
    company_id: Optional[uuid.UUID] = Field(
        default=None, description="Selects the company policy and calendar"
    )
    hours_per_day: Optional[Decimal] = Field(
        default=None,
        gt=0,
        le=24,
        decimal_places=4,
        description="Hours in one leave day; defaults to the policy's day_hours",
    )
    policy_min_unit: Optional[MinUnit] = Field(
        default=None, description="Booking granularity; defaults to the policy's min_unit"
    )
    details: list[LeaveDetailIn] = Field(..., min_length=1)
    mode: AllocationMode = AllocationMode.hold
    manual_grant_ids: Optional[list[uuid.UUID]] = Field(
        default=None,
        description="Exhaustive, exact-order list of grants to draw from",
    )
    actor_id: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════


class ReverseRequest(BaseModel):
    """Payload for reversing confirmed consumption."""

    reason: str = Field(..., min_length=1, max_length=1000)
    actor_id: Optional[uuid.UUID] = None

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reason must not be blank.")
        return v


class TransitionRequest(BaseModel):
    """Optional body for confirm / release."""

    actor_id: Optional[uuid.UUID] = None


class DecisionRequest(BaseModel):
    """Approve / reject / cancel a request's consumption in one call."""

    action: DecisionAction
    comment: Optional[str] = Field(None, max_length=1000)
    actor_id: Optional[uuid.UUID] = None


class TransitionOut(BaseModel):
    ok: bool = True
    request_id: uuid.UUID
    state: ConsumptionState
    count: int


# ═════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════


class ConsumptionOut(BaseModel):
    """A ledger row as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    grant_id: uuid.UUID
    request_id: uuid.UUID
    consumed_on: date
    quantity: Decimal
    state: ConsumptionState
    reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class GrantBalanceOut(BaseModel):
    """A grant with its derived balances, for manual-override pickers."""

    id: uuid.UUID
    leave_type_id: uuid.UUID
    quantity: Decimal
    granted_on: date
    expires_on: Optional[date] = None
    remaining_confirmed: Decimal
    remaining_including_holds: Decimal
    is_expired: bool = False


class BalanceSummaryOut(BaseModel):
    """Totals over the grants still usable on `as_of`."""

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    as_of: date
    granted: Decimal = Decimal("0")
    confirmed: Decimal = Decimal("0")
    held: Decimal = Decimal("0")
    remaining_confirmed: Decimal = Decimal("0")
    remaining_including_holds: Decimal = Decimal("0")
