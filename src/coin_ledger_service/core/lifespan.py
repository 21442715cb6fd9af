"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from coin_ledger_service.clients.identity_client import IdentityClient
from coin_ledger_service.clients.payment_gateway_client import PaymentGatewayClient
from coin_ledger_service.config import get_settings
from coin_ledger_service.core.state import init_app_state
from coin_ledger_service.logging import get_logger, setup_logging
from coin_ledger_service.services.escrow_ledger import EscrowLedger
from coin_ledger_service.services.ledger_store import LedgerStore
from coin_ledger_service.services.submission_workflow import SubmissionWorkflow
from coin_ledger_service.services.topup_service import TopUpService
from coin_ledger_service.services.withdrawal_service import WithdrawalService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = LedgerStore(
        db_path=settings.database.path,
        busy_timeout_ms=settings.database.busy_timeout_ms,
    )
    state.store = store

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_token_path=settings.identity.verify_token_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    payment_gateway = PaymentGatewayClient(
        base_url=settings.payment_gateway.base_url,
        confirm_deposit_path=settings.payment_gateway.confirm_deposit_path,
        timeout_seconds=settings.payment_gateway.timeout_seconds,
    )
    state.identity_client = identity_client
    state.payment_gateway = payment_gateway

    escrow_ledger = EscrowLedger(store=store)
    state.escrow_ledger = escrow_ledger
    state.submission_workflow = SubmissionWorkflow(store=store, escrow_ledger=escrow_ledger)
    state.withdrawal_service = WithdrawalService(
        store=store,
        minimum_coins=settings.withdrawals.minimum_coins,
    )
    state.topup_service = TopUpService(
        store=store,
        payment_gateway=payment_gateway,
        coins_per_cash_unit=settings.top_ups.coins_per_cash_unit,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "payment_gateway_base_url": settings.payment_gateway.base_url,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})
    try:
        await identity_client.close()
    finally:
        try:
            await payment_gateway.close()
        finally:
            store.close()
