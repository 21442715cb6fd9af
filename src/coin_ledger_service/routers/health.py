"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from coin_ledger_service.core.state import get_app_state
from coin_ledger_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return ledger statistics."""
    state = get_app_state()
    total_accounts = 0
    stats: dict[str, object] = {"total_tasks": 0, "tasks_by_status": {}, "total_escrowed": 0}
    if state.store is not None and state.escrow_ledger is not None:
        total_accounts = await run_in_threadpool(state.store.count_accounts)
        stats = await run_in_threadpool(state.escrow_ledger.get_stats)
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_accounts=total_accounts,
        total_tasks=stats["total_tasks"],  # type: ignore[arg-type]
        tasks_by_status=stats["tasks_by_status"],  # type: ignore[arg-type]
        total_escrowed=stats["total_escrowed"],  # type: ignore[arg-type]
    )
