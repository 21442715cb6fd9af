"""API routers."""

from coin_ledger_service.routers import accounts, health, submissions, tasks, topups, withdrawals

__all__ = ["accounts", "health", "submissions", "tasks", "topups", "withdrawals"]
