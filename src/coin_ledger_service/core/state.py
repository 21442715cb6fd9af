"""Process-wide handles to the ledger components, set up by the lifespan."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coin_ledger_service.clients.identity_client import IdentityClient
    from coin_ledger_service.clients.payment_gateway_client import PaymentGatewayClient
    from coin_ledger_service.services.escrow_ledger import EscrowLedger
    from coin_ledger_service.services.ledger_store import LedgerStore
    from coin_ledger_service.services.submission_workflow import SubmissionWorkflow
    from coin_ledger_service.services.topup_service import TopUpService
    from coin_ledger_service.services.withdrawal_service import WithdrawalService


@dataclass
class AppState:
    """The store, the four ledger components and the outbound clients."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: LedgerStore | None = None
    escrow_ledger: EscrowLedger | None = None
    submission_workflow: SubmissionWorkflow | None = None
    withdrawal_service: WithdrawalService | None = None
    topup_service: TopUpService | None = None
    identity_client: IdentityClient | None = None
    payment_gateway: PaymentGatewayClient | None = None

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """Start time as ISO 8601 UTC, e.g. ``2026-01-01T00:00:00Z``."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Mutable holder rather than a `global` rebinding
_current: dict[str, AppState] = {}


def get_app_state() -> AppState:
    """
    Return the running app's state.

    Raises:
        RuntimeError: If called before the lifespan has started.
    """
    state = _current.get("app")
    if state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return state


def init_app_state() -> AppState:
    """Install a fresh AppState and return it."""
    state = AppState()
    _current["app"] = state
    return state


def reset_app_state() -> None:
    """Forget the installed AppState."""
    _current.pop("app", None)
