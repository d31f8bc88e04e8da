"""Leave ledger service layer — allocation engine and lifecycle controller.

Business logic:
  - Aggregate request detail lines into per-date hour demand
  - Gate demand dates on business days and blackout dates
  - Allocate demand across grants (FIFO or manual order) as HOLD or CONFIRMED
  - Confirm / release / reverse a request's consumption rows as a unit
  - Grant and balance read models for override pickers and dashboards

Every mutating call runs in its own transaction and is all-or-nothing.
Audit events are recorded after commit and never fail the operation.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from leave_ledger.common.audit import AuditEvent, AuditSink, record_best_effort
from leave_ledger.common.constants import (
    DEFAULT_REVERSE_REASON,
    AllocationMode,
    ConsumptionState,
    DecisionAction,
    LedgerAction,
)
from leave_ledger.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from leave_ledger.leave.allocation import GrantBalance, default_priority, plan_allocation
from leave_ledger.leave.calendar import CalendarService
from leave_ledger.leave.models import LeaveConsumption
from leave_ledger.leave.needs import aggregate_needs
from leave_ledger.leave.policy import PolicyStore, check_policy
from leave_ledger.leave.repository import LedgerRepository
from leave_ledger.leave.schemas import (
    AllocateRequest,
    BalanceSummaryOut,
    GrantBalanceOut,
)

logger = logging.getLogger(__name__)

ENTITY_TYPE = "leave_request"


def _by_state(
    rows: Sequence[LeaveConsumption], state: ConsumptionState,
) -> list[LeaveConsumption]:
    return [r for r in rows if r.state == state]


def _rows_summary(rows: Sequence[LeaveConsumption]) -> list[dict[str, str]]:
    return [
        {
            "grant_id": str(r.grant_id),
            "consumed_on": r.consumed_on.isoformat(),
            "quantity": str(r.quantity),
        }
        for r in rows
    ]


# ═════════════════════════════════════════════════════════════════════
# LeaveLedgerService
# ═════════════════════════════════════════════════════════════════════


class LeaveLedgerService:
    """Async ledger operations: allocate, confirm, release, reverse, balances."""

    def __init__(
        self,
        repo: LedgerRepository,
        policies: PolicyStore,
        calendar: CalendarService,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.repo = repo
        self.policies = policies
        self.calendar = calendar
        self.audit = audit

    # ─────────────────────────────────────────────────────────────────
    # Allocate
    # ─────────────────────────────────────────────────────────────────

    async def allocate(self, data: AllocateRequest) -> list[LeaveConsumption]:
        """Allocate a request's hours against the user's grants.

        Existing HOLD rows of the request are released and replaced, so a
        resubmitted draft never double-books. Policy checks run before the
        transaction opens; the allocation plan is complete before the first
        row is written.
        """
        policy = await self.policies.get_policy(data.company_id, data.leave_type_id)
        needs = aggregate_needs(
            data.details,
            hours_per_day=(
                data.hours_per_day if data.hours_per_day is not None else policy.day_hours
            ),
            policy_min_unit=data.policy_min_unit or policy.min_unit,
        )
        await check_policy(needs, policy, self.calendar, data.company_id)

        state = (
            ConsumptionState.hold
            if data.mode == AllocationMode.hold
            else ConsumptionState.confirmed
        )

        async with self.repo.transaction():
            await self.repo.lock_request(data.request_id)

            existing = await self.repo.get_consumptions(data.request_id, for_update=True)
            if _by_state(existing, ConsumptionState.confirmed):
                raise ConflictError(
                    "already_confirmed",
                    f"Leave request '{data.request_id}' is already confirmed.",
                )
            previous_holds = _by_state(existing, ConsumptionState.hold)

            grants = await self.repo.get_grant_balances(
                data.user_id, data.leave_type_id, for_update=True,
            )
            if not grants:
                raise NotFoundException(
                    "LeaveGrant", f"user={data.user_id} leave_type={data.leave_type_id}",
                )

            # The request's own holds are about to be released
            freed: dict[uuid.UUID, Decimal] = {}
            for row in previous_holds:
                freed[row.grant_id] = freed.get(row.grant_id, Decimal("0")) + row.quantity
            for grant in grants:
                grant.held -= freed.get(grant.id, Decimal("0"))

            draws = plan_allocation(
                needs,
                grants,
                manual_grant_ids=data.manual_grant_ids,
                allow_negative=policy.allow_negative,
            )

            if previous_holds:
                await self.repo.transition(previous_holds, ConsumptionState.released)
            rows = await self.repo.add_consumptions(data.request_id, draws, state)

        logger.info(
            "Allocated %s hours for request %s as %s across %d rows (replaced %d holds)",
            sum(needs.values()), data.request_id, state.value, len(rows), len(previous_holds),
        )
        await record_best_effort(
            self.audit,
            AuditEvent(
                action=(
                    LedgerAction.allocate_hold.value
                    if state == ConsumptionState.hold
                    else LedgerAction.allocate_confirm.value
                ),
                entity_type=ENTITY_TYPE,
                entity_id=data.request_id,
                actor_id=data.actor_id or data.user_id,
                new_values={"state": state.value, "rows": _rows_summary(rows)},
            ),
        )
        return rows

    # ─────────────────────────────────────────────────────────────────
    # Confirm
    # ─────────────────────────────────────────────────────────────────

    async def confirm(
        self,
        request_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """HOLD → CONFIRMED for every row of the request."""

        async with self.repo.transaction():
            await self.repo.lock_request(request_id)
            rows = await self.repo.get_consumptions(request_id, for_update=True)
            holds = _by_state(rows, ConsumptionState.hold)
            if not holds:
                if _by_state(rows, ConsumptionState.confirmed):
                    raise ConflictError(
                        "already_confirmed",
                        f"Leave request '{request_id}' is already confirmed.",
                    )
                raise NotFoundException("LeaveConsumption", request_id)
            count = await self.repo.transition(holds, ConsumptionState.confirmed)

        logger.info("Confirmed %d rows for request %s", count, request_id)
        await self._record(LedgerAction.confirm, request_id, actor_id, ConsumptionState.hold,
                           ConsumptionState.confirmed, count)
        return count

    # ─────────────────────────────────────────────────────────────────
    # Release
    # ─────────────────────────────────────────────────────────────────

    async def release(
        self,
        request_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """HOLD → RELEASED. Confirmed requests must be reversed instead."""

        async with self.repo.transaction():
            await self.repo.lock_request(request_id)
            rows = await self.repo.get_consumptions(request_id, for_update=True)
            if _by_state(rows, ConsumptionState.confirmed):
                raise ConflictError(
                    "already_confirmed",
                    f"Leave request '{request_id}' is confirmed; reverse it instead.",
                )
            holds = _by_state(rows, ConsumptionState.hold)
            if not holds:
                raise NotFoundException("LeaveConsumption", request_id)
            count = await self.repo.transition(holds, ConsumptionState.released)

        logger.info("Released %d held rows for request %s", count, request_id)
        await self._record(LedgerAction.release, request_id, actor_id, ConsumptionState.hold,
                           ConsumptionState.released, count)
        return count

    # ─────────────────────────────────────────────────────────────────
    # Reverse
    # ─────────────────────────────────────────────────────────────────

    async def reverse(
        self,
        request_id: uuid.UUID,
        reason: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """CONFIRMED → REVERSED with `reason`; returns the count reversed.

        A request whose rows are all terminal already reverses nothing and
        returns 0, so a repeated cancellation is harmless.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException(
                {"reason": ["A reason is required to reverse confirmed leave."]},
                reason="reason_required",
            )

        async with self.repo.transaction():
            await self.repo.lock_request(request_id)
            rows = await self.repo.get_consumptions(request_id, for_update=True)
            if not rows:
                raise NotFoundException("LeaveConsumption", request_id)
            confirmed = _by_state(rows, ConsumptionState.confirmed)
            if not confirmed and _by_state(rows, ConsumptionState.hold):
                raise ConflictError(
                    "not_confirmed",
                    f"Leave request '{request_id}' is on hold; release it instead.",
                )
            count = await self.repo.transition(
                confirmed, ConsumptionState.reversed, reason=reason,
            )

        if count:
            logger.info("Reversed %d rows for request %s: %s", count, request_id, reason)
            await self._record(LedgerAction.reverse, request_id, actor_id,
                               ConsumptionState.confirmed, ConsumptionState.reversed,
                               count, reason=reason)
        return count

    # ─────────────────────────────────────────────────────────────────
    # Decide (approve / reject / cancel)
    # ─────────────────────────────────────────────────────────────────

    async def decide(
        self,
        request_id: uuid.UUID,
        action: DecisionAction,
        *,
        comment: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> tuple[ConsumptionState, int]:
        """Map an approver decision onto the matching ledger transition."""
        if action == DecisionAction.approve:
            count = await self.confirm(request_id, actor_id=actor_id)
            return ConsumptionState.confirmed, count
        if action == DecisionAction.reject:
            count = await self.release(request_id, actor_id=actor_id)
            return ConsumptionState.released, count
        count = await self.reverse(
            request_id, comment or DEFAULT_REVERSE_REASON, actor_id=actor_id,
        )
        return ConsumptionState.reversed, count

    # ─────────────────────────────────────────────────────────────────
    # Read models
    # ─────────────────────────────────────────────────────────────────

    async def list_consumptions(self, request_id: uuid.UUID) -> list[LeaveConsumption]:
        rows = await self.repo.get_consumptions(request_id)
        if not rows:
            raise NotFoundException("LeaveConsumption", request_id)
        return rows

    async def list_grants(
        self,
        user_id: uuid.UUID,
        leave_type_id: Optional[uuid.UUID] = None,
        *,
        as_of: Optional[date] = None,
    ) -> list[GrantBalanceOut]:
        """All grants with derived balances, in default priority order."""
        as_of = as_of or date.today()
        grants = await self.repo.get_grant_balances(user_id, leave_type_id)
        return [self._grant_out(g, as_of) for g in default_priority(grants)]

    async def get_balance(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        as_of: Optional[date] = None,
    ) -> BalanceSummaryOut:
        """Totals over the grants still usable on `as_of` (default today)."""
        as_of = as_of or date.today()
        grants = [
            g for g in await self.repo.get_grant_balances(user_id, leave_type_id)
            if not g.is_expired(as_of)
        ]
        granted = sum((g.quantity for g in grants), Decimal("0"))
        confirmed = sum((g.confirmed for g in grants), Decimal("0"))
        held = sum((g.held for g in grants), Decimal("0"))
        return BalanceSummaryOut(
            user_id=user_id,
            leave_type_id=leave_type_id,
            as_of=as_of,
            granted=granted,
            confirmed=confirmed,
            held=held,
            remaining_confirmed=granted - confirmed,
            remaining_including_holds=granted - confirmed - held,
        )

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _grant_out(grant: GrantBalance, as_of: date) -> GrantBalanceOut:
        return GrantBalanceOut(
            id=grant.id,
            leave_type_id=grant.leave_type_id,
            quantity=grant.quantity,
            granted_on=grant.granted_on,
            expires_on=grant.expires_on,
            remaining_confirmed=grant.remaining_confirmed,
            remaining_including_holds=grant.remaining_including_holds,
            is_expired=grant.is_expired(as_of),
        )

    async def _record(
        self,
        action: LedgerAction,
        request_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        old_state: ConsumptionState,
        new_state: ConsumptionState,
        count: int,
        *,
        reason: Optional[str] = None,
    ) -> None:
        new_values: dict[str, object] = {"state": new_state.value, "count": count}
        if reason is not None:
            new_values["reason"] = reason
        await record_best_effort(
            self.audit,
            AuditEvent(
                action=action.value,
                entity_type=ENTITY_TYPE,
                entity_id=request_id,
                actor_id=actor_id,
                old_values={"state": old_state.value},
                new_values=new_values,
            ),
        )
