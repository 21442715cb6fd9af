"""Submission review endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from coin_ledger_service.routers.helpers import authenticate, get_submission_workflow
from coin_ledger_service.services.authorization import require_self_or_admin

router = APIRouter()


# === GET /submissions?worker_id= — Worker History ===


@router.get("/submissions")
async def list_submissions_for_worker(
    request: Request,
    worker_id: str | None = None,
) -> dict[str, object]:
    """List a worker's submissions. Workers see their own; admins pass worker_id."""
    ctx = await authenticate(request, "list_submissions_for_worker")
    target = worker_id or ctx.account_id
    require_self_or_admin(ctx, target)

    submissions = await run_in_threadpool(get_submission_workflow().list_for_worker, target)
    return {"worker_id": target, "submissions": submissions}


# === POST /submissions/{submission_id}/approve — Pay Worker ===


@router.post("/submissions/{submission_id}/approve")
async def approve_submission(request: Request, submission_id: str) -> dict[str, object]:
    """Approve a pending submission. Task owner or admin."""
    ctx = await authenticate(request, "approve_submission")
    return await run_in_threadpool(
        get_submission_workflow().approve,
        submission_id,
        ctx.account_id,
    )


# === POST /submissions/{submission_id}/reject — Return Slot ===


@router.post("/submissions/{submission_id}/reject")
async def reject_submission(request: Request, submission_id: str) -> dict[str, object]:
    """Reject a pending submission. Task owner or admin."""
    ctx = await authenticate(request, "reject_submission")
    return await run_in_threadpool(
        get_submission_workflow().reject,
        submission_id,
        ctx.account_id,
    )

