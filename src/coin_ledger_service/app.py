"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from coin_ledger_service.config import get_settings
from coin_ledger_service.core.exceptions import register_exception_handlers
from coin_ledger_service.core.lifespan import lifespan
from coin_ledger_service.core.middleware import RequestValidationMiddleware
from coin_ledger_service.routers import accounts, health, submissions, tasks, topups, withdrawals


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(accounts.router, tags=["Accounts"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(submissions.router, tags=["Submissions"])
    app.include_router(withdrawals.router, tags=["Withdrawals"])
    app.include_router(topups.router, tags=["Top-ups"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
