"""Account endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.routers.helpers import (
    authenticate,
    get_store,
    parse_json_body,
    require_field,
)
from coin_ledger_service.services.authorization import require_self_or_admin

router = APIRouter()


# === POST /accounts — Create Account ===


@router.post("/accounts", status_code=201)
async def create_account(request: Request) -> JSONResponse:
    """
    Open a ledger account.

    Callers open their own account with the identity and role the Identity
    service vouches for, at zero balance. Admins may open any account and
    seed a starting balance.
    """
    ctx = await authenticate(request, "create_account")
    data = parse_json_body(await request.body())

    email = require_field(data, "email")
    if not isinstance(email, str) or "@" not in email:
        raise ServiceError("INVALID_PAYLOAD", "email must be a valid address", 400, {})

    account_id = data.get("account_id", ctx.account_id)
    role = data.get("role", ctx.role)
    initial_balance = data.get("initial_balance", 0)
    if not isinstance(account_id, str) or not account_id:
        raise ServiceError("INVALID_PAYLOAD", "account_id must be a non-empty string", 400, {})
    if not isinstance(role, str):
        raise ServiceError("INVALID_ROLE", "role must be a string", 400, {})

    if not ctx.is_admin:
        if account_id != ctx.account_id or role != ctx.role:
            raise ServiceError(
                "FORBIDDEN",
                "You can only open your own account with your own role",
                403,
                {},
            )
        if initial_balance != 0:
            raise ServiceError(
                "FORBIDDEN",
                "Only an admin can set a non-zero initial balance",
                403,
                {},
            )

    store = get_store()
    result = await run_in_threadpool(
        store.create_account, account_id, email, role, initial_balance
    )
    get_logger(__name__).info(
        "Account created",
        extra={"account_id": account_id, "role": role, "initial_balance": initial_balance},
    )
    return JSONResponse(status_code=201, content=result)


# === GET /accounts/{account_id} — Balance ===


@router.get("/accounts/{account_id}")
async def get_account(request: Request, account_id: str) -> dict[str, object]:
    """Get an account and its coin balance. Owner or admin."""
    ctx = await authenticate(request, "get_account_balance")
    require_self_or_admin(ctx, account_id)

    store = get_store()
    account = await run_in_threadpool(store.require_account, account_id)
    return account


# === GET /accounts/{account_id}/transactions — History ===


@router.get("/accounts/{account_id}/transactions")
async def get_transactions(request: Request, account_id: str) -> dict[str, object]:
    """Get an account's transaction log. Owner or admin."""
    ctx = await authenticate(request, "get_transactions")
    require_self_or_admin(ctx, account_id)

    store = get_store()
    transactions = await run_in_threadpool(store.get_transactions, account_id)
    return {"account_id": account_id, "transactions": transactions}
