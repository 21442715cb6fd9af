"""Caller identity and the role predicate applied to every ledger operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from coin_ledger_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from coin_ledger_service.services.ledger_store import LedgerStore

ROLES: frozenset[str] = frozenset({"worker", "buyer", "admin"})

# Roles permitted to invoke each operation. Record ownership (the buyer who
# owns a task, the worker who owns a balance) is checked by the component
# that owns the record.
OPERATION_ROLES: dict[str, frozenset[str]] = {
    "create_task": frozenset({"buyer"}),
    "update_task": frozenset({"buyer"}),
    "cancel_task": frozenset({"buyer"}),
    "submit_work": frozenset({"worker"}),
    "approve_submission": frozenset({"buyer", "admin"}),
    "reject_submission": frozenset({"buyer", "admin"}),
    "request_withdrawal": frozenset({"worker"}),
    "approve_withdrawal": frozenset({"admin"}),
    "credit_top_up": frozenset({"buyer", "admin"}),
    "create_account": frozenset({"worker", "buyer", "admin"}),
    "get_account_balance": frozenset({"worker", "buyer", "admin"}),
    "get_transactions": frozenset({"worker", "buyer", "admin"}),
    "get_task": frozenset({"worker", "buyer", "admin"}),
    "list_open_tasks": frozenset({"worker", "buyer", "admin"}),
    "list_submissions_for_worker": frozenset({"worker", "admin"}),
    "list_submissions_for_task": frozenset({"buyer", "admin"}),
    "list_withdrawals_for_worker": frozenset({"worker", "admin"}),
    "list_pending_withdrawals": frozenset({"admin"}),
}


@dataclass(frozen=True)
class AuthContext:
    """Verified identity of the current caller."""

    account_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def authorize(role: str, operation: str) -> None:
    """
    Check that ``role`` may perform ``operation``.

    Raises:
        ServiceError: FORBIDDEN if the role is not permitted.
        KeyError: If ``operation`` is not a known ledger operation.
    """
    allowed = OPERATION_ROLES[operation]
    if role not in allowed:
        raise ServiceError(
            "FORBIDDEN",
            f"Role '{role}' may not perform {operation}",
            403,
            {"operation": operation, "allowed_roles": sorted(allowed)},
        )


def require_self_or_admin(ctx: AuthContext, account_id: str) -> None:
    """Check that the caller acts on their own account, unless they are an admin."""
    if not ctx.is_admin and ctx.account_id != account_id:
        raise ServiceError(
            "FORBIDDEN",
            "You can only access your own account",
            403,
            {},
        )


def authorize_actor(store: LedgerStore, account_id: str, operation: str) -> dict[str, Any]:
    """
    Load the acting account and check its stored role for ``operation``.

    Returns:
        The actor's account record.

    Raises:
        ServiceError: ACCOUNT_NOT_FOUND, FORBIDDEN.
    """
    account = store.require_account(account_id)
    authorize(str(account["role"]), operation)
    return account
