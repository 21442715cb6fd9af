"""Shared router helper functions."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.core.state import get_app_state
from coin_ledger_service.services.authorization import authorize

if TYPE_CHECKING:
    from fastapi import Request

    from coin_ledger_service.services.authorization import AuthContext
    from coin_ledger_service.services.escrow_ledger import EscrowLedger
    from coin_ledger_service.services.ledger_store import LedgerStore
    from coin_ledger_service.services.submission_workflow import SubmissionWorkflow
    from coin_ledger_service.services.topup_service import TopUpService
    from coin_ledger_service.services.withdrawal_service import WithdrawalService


def _reject_constant(name: str) -> Any:
    msg = f"{name} is not valid JSON"
    raise ValueError(msg)


def parse_json_body(body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure. NaN and Infinity are rejected."""
    try:
        data = json.loads(body, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def get_store() -> LedgerStore:
    """Get the ledger store from app state."""
    store = get_app_state().store
    if store is None:
        msg = "Ledger store not initialized"
        raise RuntimeError(msg)
    return store


def get_escrow_ledger() -> EscrowLedger:
    """Get the escrow ledger from app state."""
    escrow_ledger = get_app_state().escrow_ledger
    if escrow_ledger is None:
        msg = "Escrow ledger not initialized"
        raise RuntimeError(msg)
    return escrow_ledger


def get_submission_workflow() -> SubmissionWorkflow:
    """Get the submission workflow from app state."""
    workflow = get_app_state().submission_workflow
    if workflow is None:
        msg = "Submission workflow not initialized"
        raise RuntimeError(msg)
    return workflow


def get_withdrawal_service() -> WithdrawalService:
    """Get the withdrawal service from app state."""
    service = get_app_state().withdrawal_service
    if service is None:
        msg = "Withdrawal service not initialized"
        raise RuntimeError(msg)
    return service


def get_topup_service() -> TopUpService:
    """Get the top-up service from app state."""
    service = get_app_state().topup_service
    if service is None:
        msg = "Top-up service not initialized"
        raise RuntimeError(msg)
    return service


async def authenticate(request: Request, operation: str) -> AuthContext:
    """
    Resolve the caller from the bearer token and check the operation's roles.

    Raises:
        ServiceError: UNAUTHORIZED if the header is missing or the token is invalid.
        ServiceError: FORBIDDEN if the caller's role may not perform ``operation``.
    """
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ServiceError(
            "UNAUTHORIZED",
            "Missing bearer token",
            401,
            {},
        )

    state = get_app_state()
    if state.identity_client is None:
        msg = "Identity client not initialized"
        raise RuntimeError(msg)

    ctx = await state.identity_client.verify_token(token.strip())
    authorize(ctx.role, operation)
    return ctx


def require_field(data: dict[str, Any], field: str) -> Any:
    """Return a required body field, raising INVALID_PAYLOAD when absent."""
    if field not in data or data[field] is None:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Missing field: {field}",
            400,
            {"field": field},
        )
    return data[field]
