"""Top-up endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.routers.helpers import (
    authenticate,
    get_topup_service,
    parse_json_body,
    require_field,
)
from coin_ledger_service.services.authorization import require_self_or_admin

router = APIRouter()


# === POST /top-ups — Credit a Confirmed Deposit ===


@router.post("/top-ups", status_code=201)
async def credit_top_up(request: Request) -> JSONResponse:
    """
    Credit coins for a deposit the payment gateway has captured.

    Safe to retry: a reference that was already applied returns the
    original record.
    """
    ctx = await authenticate(request, "credit_top_up")
    data = parse_json_body(await request.body())

    account_id = data.get("account_id") or ctx.account_id
    if not isinstance(account_id, str):
        raise ServiceError("INVALID_PAYLOAD", "account_id must be a string", 400, {})
    require_self_or_admin(ctx, account_id)

    top_up = await get_topup_service().credit_confirmed_deposit(
        account_id,
        require_field(data, "coin_amount"),
        require_field(data, "external_ref"),
    )
    get_logger(__name__).info(
        "Top-up request handled",
        extra={"account_id": account_id, "top_up_id": top_up["top_up_id"]},
    )
    return JSONResponse(status_code=201, content=top_up)
