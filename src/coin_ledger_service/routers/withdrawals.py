"""Withdrawal endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from coin_ledger_service.routers.helpers import (
    authenticate,
    get_withdrawal_service,
    parse_json_body,
    require_field,
)
from coin_ledger_service.services.authorization import require_self_or_admin

router = APIRouter()


# === POST /withdrawals — Request Payout (Worker) ===


@router.post("/withdrawals", status_code=201)
async def request_withdrawal(request: Request) -> JSONResponse:
    """Request a cash payout; the coins are debited immediately."""
    ctx = await authenticate(request, "request_withdrawal")
    data = parse_json_body(await request.body())

    withdrawal = await run_in_threadpool(
        get_withdrawal_service().request,
        ctx.account_id,
        require_field(data, "coin_amount"),
        require_field(data, "cash_amount"),
        require_field(data, "payment_system"),
        require_field(data, "account_number"),
    )
    return JSONResponse(status_code=201, content=withdrawal)


# === GET /withdrawals/pending — Payout Queue (Admin) ===


@router.get("/withdrawals/pending")
async def list_pending_withdrawals(request: Request) -> dict[str, object]:
    """List withdrawals waiting for an admin to pay out."""
    await authenticate(request, "list_pending_withdrawals")
    withdrawals = await run_in_threadpool(get_withdrawal_service().list_pending)
    return {"withdrawals": withdrawals}


# === GET /withdrawals?worker_id= — Worker History ===


@router.get("/withdrawals")
async def list_withdrawals_for_worker(
    request: Request,
    worker_id: str | None = None,
) -> dict[str, object]:
    """List a worker's withdrawals. Workers see their own; admins pass worker_id."""
    ctx = await authenticate(request, "list_withdrawals_for_worker")
    target = worker_id or ctx.account_id
    require_self_or_admin(ctx, target)

    withdrawals = await run_in_threadpool(get_withdrawal_service().list_for_worker, target)
    return {"worker_id": target, "withdrawals": withdrawals}


# === POST /withdrawals/{withdrawal_id}/approve — Record Payout (Admin) ===


@router.post("/withdrawals/{withdrawal_id}/approve")
async def approve_withdrawal(request: Request, withdrawal_id: str) -> dict[str, object]:
    """Mark a withdrawal as paid. Does not change any balance."""
    ctx = await authenticate(request, "approve_withdrawal")
    return await run_in_threadpool(
        get_withdrawal_service().approve,
        withdrawal_id,
        ctx.account_id,
    )
