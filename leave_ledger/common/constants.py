"""Enums and constants for the leave ledger — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Ledger ──────────────────────────────────────────────────────────

class ConsumptionState(str, enum.Enum):
    hold = "hold"
    confirmed = "confirmed"
    released = "released"
    reversed = "reversed"


# States that count against a grant's balance
ACTIVE_STATES = (ConsumptionState.hold, ConsumptionState.confirmed)


class AllocationMode(str, enum.Enum):
    hold = "hold"
    confirm = "confirm"


class LeaveUnit(str, enum.Enum):
    day = "day"
    half = "half"
    hour = "hour"


class MinUnit(str, enum.Enum):
    one_hour = "1h"
    half_day = "0.5d"
    one_day = "1d"


class DecisionAction(str, enum.Enum):
    approve = "approve"
    reject = "reject"
    cancel = "cancel"


# ── Audit actions ───────────────────────────────────────────────────

class LedgerAction(str, enum.Enum):
    allocate_hold = "leave_allocate_hold"
    allocate_confirm = "leave_allocate_confirm"
    confirm = "leave_confirm"
    release = "leave_release"
    reverse = "leave_reverse"


# ── Misc ────────────────────────────────────────────────────────────

HOURS_QUANTUM = Decimal("0.0001")    # Numeric(10, 4) storage scale
DEFAULT_REVERSE_REASON = "cancel"
WEEKLY_OFF_DAYS = frozenset({5, 6})  # Saturday, Sunday
