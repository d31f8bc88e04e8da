"""Allocation planner — draws per-date demand from grants in priority order.

The planner is pure: it works on balance snapshots and returns the draws
to write, or raises before anything is written. The service applies the
plan inside one transaction, so a request is allocated completely or not
at all.

Priority order:
  - ``manual_grant_ids`` given → exactly those grants, in that order.
    Grants not on the list are never drawn from, even on shortfall.
  - otherwise → ascending ``granted_on``, ties broken by grant id (FIFO).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from leave_ledger.common.exceptions import (
    InsufficientBalanceError,
    ValidationException,
)

ZERO = Decimal("0")


@dataclass
class GrantBalance:
    """A grant plus the sums of its consumption that still count."""

    id: uuid.UUID
    leave_type_id: uuid.UUID
    quantity: Decimal
    granted_on: date
    expires_on: Optional[date] = None
    confirmed: Decimal = ZERO
    held: Decimal = ZERO

    @property
    def remaining_confirmed(self) -> Decimal:
        return self.quantity - self.confirmed

    @property
    def remaining_including_holds(self) -> Decimal:
        return self.quantity - self.confirmed - self.held

    def is_expired(self, on: date) -> bool:
        return self.expires_on is not None and on > self.expires_on


@dataclass(frozen=True)
class Draw:
    grant_id: uuid.UUID
    consumed_on: date
    quantity: Decimal


def default_priority(grants: Sequence[GrantBalance]) -> list[GrantBalance]:
    """Oldest grant first; grant id breaks ties so the order is stable."""
    return sorted(grants, key=lambda g: (g.granted_on, g.id))


def priority_order(
    grants: Sequence[GrantBalance],
    manual_grant_ids: Optional[Sequence[uuid.UUID]] = None,
) -> list[GrantBalance]:
    """Resolve the draw order, validating a manual override against `grants`."""
    if manual_grant_ids is None:
        return default_priority(grants)

    by_id = {g.id: g for g in grants}
    seen: set[uuid.UUID] = set()
    ordered: list[GrantBalance] = []
    for grant_id in manual_grant_ids:
        if grant_id in seen:
            raise ValidationException(
                {"manual_grant_ids": [f"Grant '{grant_id}' is listed more than once."]},
                reason="duplicate_grant",
            )
        if grant_id not in by_id:
            raise ValidationException(
                {"manual_grant_ids": [
                    f"Grant '{grant_id}' does not belong to this user and leave type."
                ]},
                reason="unknown_grant",
            )
        seen.add(grant_id)
        ordered.append(by_id[grant_id])
    return ordered


def plan_allocation(
    needs: Mapping[date, Decimal],
    grants: Sequence[GrantBalance],
    *,
    manual_grant_ids: Optional[Sequence[uuid.UUID]] = None,
    allow_negative: bool = False,
) -> list[Draw]:
    """Plan the draws that cover `needs`, dates ascending.

    Balances are tracked across dates, so hours drawn for an earlier date
    are not available to a later one.

    Raises:
        InsufficientBalanceError: a date cannot be covered and the policy
            does not allow a negative balance.
        ValidationException: the manual override names a foreign or
            repeated grant.
    """
    ordered = priority_order(grants, manual_grant_ids)
    available = {g.id: g.remaining_including_holds for g in ordered}
    draws: list[Draw] = []

    for day in sorted(needs):
        remaining = needs[day]
        eligible = [g for g in ordered if not g.is_expired(day)]
        last_used: Optional[GrantBalance] = None

        for grant in eligible:
            if remaining <= 0:
                break
            draw = min(remaining, available[grant.id])
            if draw <= 0:
                continue
            draws.append(Draw(grant.id, day, draw))
            available[grant.id] -= draw
            remaining -= draw
            last_used = grant

        if remaining > 0:
            target = last_used or (eligible[-1] if eligible else None)
            if not allow_negative or target is None:
                raise InsufficientBalanceError(day, remaining)
            draws.append(Draw(target.id, day, remaining))
            available[target.id] -= remaining

    return draws
