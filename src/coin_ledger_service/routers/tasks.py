"""Task endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.routers.helpers import (
    authenticate,
    get_escrow_ledger,
    get_submission_workflow,
    parse_json_body,
    require_field,
)

router = APIRouter()


# === POST /tasks — Create Task (Buyer) ===


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a task and lock its escrow from the buyer's balance."""
    ctx = await authenticate(request, "create_task")
    data = parse_json_body(await request.body())

    escrow_ledger = get_escrow_ledger()
    task = await run_in_threadpool(
        escrow_ledger.create_task,
        ctx.account_id,
        require_field(data, "payable_per_worker"),
        require_field(data, "slot_count"),
        require_field(data, "title"),
        require_field(data, "detail"),
    )
    return JSONResponse(status_code=201, content=task)


# === GET /tasks — Open Tasks ===


@router.get("/tasks")
async def list_open_tasks(request: Request) -> dict[str, object]:
    """List tasks that are accepting submissions."""
    await authenticate(request, "list_open_tasks")
    tasks = await run_in_threadpool(get_escrow_ledger().list_open_tasks)
    return {"tasks": tasks}


# === GET /tasks/{task_id} ===


@router.get("/tasks/{task_id}")
async def get_task(request: Request, task_id: str) -> dict[str, object]:
    """Get a single task."""
    await authenticate(request, "get_task")
    return await run_in_threadpool(get_escrow_ledger().require_task, task_id)


# === PATCH /tasks/{task_id} — Edit Title/Detail (Owner) ===


@router.patch("/tasks/{task_id}")
async def update_task(request: Request, task_id: str) -> dict[str, object]:
    """Edit a task's title or detail. Price and slots cannot change."""
    ctx = await authenticate(request, "update_task")
    data = parse_json_body(await request.body())

    immutable = {"payable_per_worker", "slot_count", "open_slots"} & data.keys()
    if immutable:
        raise ServiceError(
            "INVALID_PAYLOAD",
            "Task price and slot count cannot be changed",
            400,
            {"fields": sorted(immutable)},
        )

    return await run_in_threadpool(
        get_escrow_ledger().update_task,
        task_id,
        ctx.account_id,
        data.get("title"),
        data.get("detail"),
    )


# === POST /tasks/{task_id}/cancel — Cancel and Refund (Owner) ===


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(request: Request, task_id: str) -> dict[str, object]:
    """Cancel an open task and refund the escrow of its open slots."""
    ctx = await authenticate(request, "cancel_task")
    return await run_in_threadpool(get_escrow_ledger().cancel_task, task_id, ctx.account_id)


# === POST /tasks/{task_id}/submissions — Submit Work (Worker) ===


@router.post("/tasks/{task_id}/submissions", status_code=201)
async def submit_work(request: Request, task_id: str) -> JSONResponse:
    """Submit work against an open task."""
    ctx = await authenticate(request, "submit_work")
    data = parse_json_body(await request.body())

    submission = await run_in_threadpool(
        get_submission_workflow().submit,
        task_id,
        ctx.account_id,
        require_field(data, "details"),
    )
    return JSONResponse(status_code=201, content=submission)


# === GET /tasks/{task_id}/submissions — Review Queue (Owner or Admin) ===


@router.get("/tasks/{task_id}/submissions")
async def list_submissions_for_task(
    request: Request,
    task_id: str,
    status: str | None = None,
) -> dict[str, object]:
    """List the submissions made against a task."""
    ctx = await authenticate(request, "list_submissions_for_task")

    task = await run_in_threadpool(get_escrow_ledger().require_task, task_id)
    if not ctx.is_admin and task["buyer_id"] != ctx.account_id:
        raise ServiceError(
            "FORBIDDEN",
            "Only the buyer who posted the task can view its submissions",
            403,
            {},
        )

    submissions = await run_in_threadpool(get_submission_workflow().list_for_task, task_id, status)
    return {"task_id": task_id, "submissions": submissions}
