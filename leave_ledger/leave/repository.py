"""Ledger persistence: grants, consumption rows, locks and transactions.

The repository wraps one ``AsyncSession`` injected by the caller. Each
ledger operation runs inside ``transaction()``, which commits on success,
rolls back on any error, and turns lock/serialization failures into a
retryable ``TransientError``.

On PostgreSQL, concurrent writers are serialized by a per-request advisory
lock and ``FOR UPDATE`` on the user's grants. Other backends (SQLite in
development and tests) take no row locks, so their ledger transactions
are serialized by one in-process lock per event loop.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from contextlib import asynccontextmanager, nullcontext
from decimal import Decimal
from typing import AsyncIterator, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.audit import utcnow
from leave_ledger.common.constants import ACTIVE_STATES, ConsumptionState
from leave_ledger.common.exceptions import TransientError
from leave_ledger.leave.allocation import Draw, GrantBalance
from leave_ledger.leave.models import LeaveConsumption, LeaveGrant

logger = logging.getLogger(__name__)

# lock_not_available, serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = frozenset({"55P03", "40001", "40P01"})

# Driver messages for the same conditions where no SQLSTATE is exposed
TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "could not obtain lock",
    "could not serialize access",
    "deadlock detected",
)

_BIGINT_MASK = (1 << 63) - 1

_local_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def is_transient(exc: DBAPIError) -> bool:
    """True for lock, busy and serialization errors a retry can cure."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    if not isinstance(exc, OperationalError):
        return False
    message = str(orig).lower()
    return any(m in message for m in TRANSIENT_MESSAGES)


def advisory_key(request_id: uuid.UUID) -> int:
    """Map a request id onto PostgreSQL's signed bigint advisory-lock space."""
    return request_id.int & _BIGINT_MASK


def _local_write_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _local_locks.get(loop)
    if lock is None:
        lock = _local_locks[loop] = asyncio.Lock()
    return lock


class LedgerRepository:
    """Grant store and consumption ledger over one async session."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @property
    def _dialect(self) -> str:
        return self._db.get_bind().dialect.name

    # ─────────────────────────────────────────────────────────────────
    # Transactions & locks
    # ─────────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        guard = nullcontext() if self._dialect == "postgresql" else _local_write_lock()
        async with guard:
            try:
                yield
                await self._db.commit()
            except DBAPIError as exc:
                await self._db.rollback()
                if is_transient(exc):
                    logger.warning("Ledger transaction hit contention: %s", exc.orig)
                    raise TransientError() from exc
                raise
            except Exception:
                await self._db.rollback()
                raise

    async def lock_request(self, request_id: uuid.UUID) -> None:
        """Serialize mutations of one request's consumption set.

        PostgreSQL only; the wait is bounded by the connection's
        ``lock_timeout``.
        """
        if self._dialect != "postgresql":
            return
        await self._db.execute(
            select(func.pg_advisory_xact_lock(advisory_key(request_id)))
        )

    # ─────────────────────────────────────────────────────────────────
    # Grants
    # ─────────────────────────────────────────────────────────────────

    async def get_grant_balances(
        self,
        user_id: uuid.UUID,
        leave_type_id: Optional[uuid.UUID] = None,
        *,
        for_update: bool = False,
    ) -> list[GrantBalance]:
        """Grants of the user with their HOLD / CONFIRMED sums, FIFO ordered."""
        query = (
            select(LeaveGrant)
            .where(LeaveGrant.user_id == user_id)
            .order_by(LeaveGrant.granted_on, LeaveGrant.id)
        )
        if leave_type_id is not None:
            query = query.where(LeaveGrant.leave_type_id == leave_type_id)
        if for_update:
            query = query.with_for_update()

        grants = (await self._db.execute(query)).scalars().all()
        if not grants:
            return []

        sums_result = await self._db.execute(
            select(
                LeaveConsumption.grant_id,
                LeaveConsumption.state,
                func.coalesce(func.sum(LeaveConsumption.quantity), 0),
            )
            .where(
                LeaveConsumption.grant_id.in_([g.id for g in grants]),
                LeaveConsumption.state.in_(ACTIVE_STATES),
            )
            .group_by(LeaveConsumption.grant_id, LeaveConsumption.state)
        )
        sums: dict[tuple[uuid.UUID, ConsumptionState], Decimal] = {
            (grant_id, state): Decimal(str(total))
            for grant_id, state, total in sums_result.all()
        }

        return [
            GrantBalance(
                id=g.id,
                leave_type_id=g.leave_type_id,
                quantity=Decimal(str(g.quantity)),
                granted_on=g.granted_on,
                expires_on=g.expires_on,
                confirmed=sums.get((g.id, ConsumptionState.confirmed), Decimal("0")),
                held=sums.get((g.id, ConsumptionState.hold), Decimal("0")),
            )
            for g in grants
        ]

    # ─────────────────────────────────────────────────────────────────
    # Consumption rows
    # ─────────────────────────────────────────────────────────────────

    async def get_consumptions(
        self,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> list[LeaveConsumption]:
        query = (
            select(LeaveConsumption)
            .where(LeaveConsumption.request_id == request_id)
            .order_by(LeaveConsumption.consumed_on, LeaveConsumption.created_at)
        )
        if for_update:
            query = query.with_for_update()
        return list((await self._db.execute(query)).scalars().all())

    async def add_consumptions(
        self,
        request_id: uuid.UUID,
        draws: Sequence[Draw],
        state: ConsumptionState,
    ) -> list[LeaveConsumption]:
        now = utcnow()
        rows = [
            LeaveConsumption(
                grant_id=d.grant_id,
                request_id=request_id,
                consumed_on=d.consumed_on,
                quantity=d.quantity,
                state=state,
                created_at=now,
                updated_at=now,
            )
            for d in draws
        ]
        self._db.add_all(rows)
        await self._db.flush()
        return rows

    async def transition(
        self,
        rows: Sequence[LeaveConsumption],
        state: ConsumptionState,
        *,
        reason: Optional[str] = None,
    ) -> int:
        """Move every row to `state` together; returns the number moved."""
        now = utcnow()
        for row in rows:
            row.state = state
            row.updated_at = now
            if reason is not None:
                row.reason = reason
        await self._db.flush()
        return len(rows)
