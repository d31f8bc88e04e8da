"""Leave ledger router — allocate, lifecycle transitions, grants and balances.

Authentication is handled upstream; callers pass the acting user's id in
the body where an audit actor is wanted.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from leave_ledger.common.constants import ConsumptionState
from leave_ledger.common.rate_limit import limiter
from leave_ledger.dependencies import get_ledger_service
from leave_ledger.leave.schemas import (
    AllocateRequest,
    BalanceSummaryOut,
    ConsumptionOut,
    DecisionRequest,
    GrantBalanceOut,
    ReverseRequest,
    TransitionOut,
    TransitionRequest,
)
from leave_ledger.leave.service import LeaveLedgerService

router = APIRouter(prefix="", tags=["leave-ledger"])


# ── POST /allocate ──────────────────────────────────────────────────

@router.post("/allocate", response_model=list[ConsumptionOut], status_code=201)
@limiter.limit("30/minute")
async def allocate(
    request: Request,
    body: AllocateRequest,
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    """Hold or confirm a request's hours. Replaces the request's existing holds."""
    return await service.allocate(body)


# ── POST /requests/{id}/confirm ─────────────────────────────────────

@router.post("/requests/{request_id}/confirm", response_model=TransitionOut)
async def confirm(
    request_id: uuid.UUID,
    body: Optional[TransitionRequest] = None,
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    """Approve: HOLD → CONFIRMED."""
    count = await service.confirm(request_id, actor_id=body.actor_id if body else None)
    return TransitionOut(request_id=request_id, state=ConsumptionState.confirmed, count=count)


# ── POST /requests/{id}/release ─────────────────────────────────────

@router.post("/requests/{request_id}/release", response_model=TransitionOut)
async def release(
    request_id: uuid.UUID,
    body: Optional[TransitionRequest] = None,
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    """Reject before approval: HOLD → RELEASED."""
    count = await service.release(request_id, actor_id=body.actor_id if body else None)
    return TransitionOut(request_id=request_id, state=ConsumptionState.released, count=count)


# ── POST /requests/{id}/reverse ─────────────────────────────────────

@router.post("/requests/{request_id}/reverse", response_model=TransitionOut)
async def reverse(
    request_id: uuid.UUID,
    body: ReverseRequest,
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    """Cancel after approval: CONFIRMED → REVERSED."""
    count = await service.reverse(request_id, body.reason, actor_id=body.actor_id)
    return TransitionOut(request_id=request_id, state=ConsumptionState.reversed, count=count)


# ── POST /requests/{id}/decision ────────────────────────────────────

@router.post("/requests/{request_id}/decision", response_model=TransitionOut)
async def decide(
    request_id: uuid.UUID,
    body: DecisionRequest,
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    """approve → confirm, reject → release, cancel → reverse."""
    state, count = await service.decide(
        request_id, body.action, comment=body.comment, actor_id=body.actor_id,
    )
    return TransitionOut(request_id=request_id, state=state, count=count)


# ── GET /requests/{id}/consumptions ─────────────────────────────────

@router.get("/requests/{request_id}/consumptions", response_model=list[ConsumptionOut])
async def list_consumptions(
    request_id: uuid.UUID,
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    return await service.list_consumptions(request_id)


# ── GET /grants ─────────────────────────────────────────────────────

@router.get("/grants", response_model=list[GrantBalanceOut])
async def list_grants(
    user_id: uuid.UUID = Query(...),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    as_of: Optional[date] = Query(None),
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    """Grants in default consumption order, for manual-override pickers."""
    return await service.list_grants(user_id, leave_type_id, as_of=as_of)


# ── GET /balance ────────────────────────────────────────────────────

@router.get("/balance", response_model=BalanceSummaryOut)
async def get_balance(
    user_id: uuid.UUID = Query(...),
    leave_type_id: uuid.UUID = Query(...),
    as_of: Optional[date] = Query(None),
    service: LeaveLedgerService = Depends(get_ledger_service),
):
    return await service.get_balance(user_id, leave_type_id, as_of=as_of)
