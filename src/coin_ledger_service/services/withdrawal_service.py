"""Worker payouts: coins are held at request time, approval records the cash payout."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.services.amounts import require_cash_amount, require_coin_amount
from coin_ledger_service.services.authorization import authorize_actor

if TYPE_CHECKING:
    from coin_ledger_service.services.ledger_store import LedgerStore

_WITHDRAWAL_COLUMNS_SQL = (
    "withdrawal_id, worker_id, coin_amount, cash_amount, payment_system, account_number, "
    "status, tx_id, requested_at, approved_at, approved_by"
)


class WithdrawalService:
    """
    Converts a worker's coins into an off-platform cash payout.

    ``request`` debits the coins with one conditional update, so two
    concurrent requests can never both spend the same balance. ``approve``
    only records that the payout happened; it never touches a balance.
    """

    def __init__(self, store: LedgerStore, minimum_coins: int) -> None:
        self._store = store
        self._minimum_coins = minimum_coins
        self._logger = get_logger(__name__)

    def request(
        self,
        worker_id: str,
        coin_amount: int,
        cash_amount: float,
        payment_system: str,
        account_number: str,
    ) -> dict[str, Any]:
        """
        Open a pending withdrawal and debit the worker's coins.

        Raises:
            ServiceError: INVALID_AMOUNT, INVALID_PAYLOAD, BELOW_MINIMUM,
                ACCOUNT_NOT_FOUND, FORBIDDEN, INSUFFICIENT_BALANCE.
        """
        coin_amount = require_coin_amount(coin_amount, "coin_amount")
        cash_amount = require_cash_amount(cash_amount, "cash_amount")
        payout_fields = (("payment_system", payment_system), ("account_number", account_number))
        for field, value in payout_fields:
            if not isinstance(value, str) or not value.strip():
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"{field} must be a non-empty string",
                    400,
                    {"field": field},
                )
        if coin_amount < self._minimum_coins:
            raise ServiceError(
                "BELOW_MINIMUM",
                f"Withdrawals must be at least {self._minimum_coins} coins",
                400,
                {"minimum_coins": self._minimum_coins},
            )

        authorize_actor(self._store, worker_id, "request_withdrawal")
        withdrawal_id = self._store.new_id("wd")

        with self._store.transaction():
            hold = self._store.adjust_balance(
                worker_id, -coin_amount, "withdrawal_hold", withdrawal_id
            )
            self._store.execute(
                f"INSERT INTO withdrawals ({_WITHDRAWAL_COLUMNS_SQL}) "
                "VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?, NULL, NULL)",
                (
                    withdrawal_id,
                    worker_id,
                    coin_amount,
                    cash_amount,
                    payment_system,
                    account_number,
                    hold["tx_id"],
                    self._store.now(),
                ),
            )

        self._logger.info(
            "Withdrawal requested",
            extra={
                "withdrawal_id": withdrawal_id,
                "worker_id": worker_id,
                "coin_amount": coin_amount,
                "cash_amount": cash_amount,
                "balance_after": hold["balance_after"],
            },
        )
        result = self.require_withdrawal(withdrawal_id)
        result["balance_after"] = hold["balance_after"]
        return result

    def approve(self, withdrawal_id: str, admin_id: str) -> dict[str, Any]:
        """
        Mark a pending withdrawal as paid out. No balance changes.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND, FORBIDDEN, WITHDRAWAL_NOT_FOUND,
                ALREADY_RESOLVED.
        """
        authorize_actor(self._store, admin_id, "approve_withdrawal")

        with self._store.transaction():
            withdrawal = self.require_withdrawal(withdrawal_id)
            rowcount = self._store.execute(
                "UPDATE withdrawals SET status = 'approved', approved_at = ?, approved_by = ? "
                "WHERE withdrawal_id = ? AND status = 'pending'",
                (self._store.now(), admin_id, withdrawal_id),
            )
            if rowcount != 1:
                raise ServiceError(
                    "ALREADY_RESOLVED",
                    "Withdrawal has already been approved",
                    409,
                    {"status": withdrawal["status"]},
                )

        self._logger.info(
            "Withdrawal approved",
            extra={
                "withdrawal_id": withdrawal_id,
                "worker_id": withdrawal["worker_id"],
                "admin_id": admin_id,
            },
        )
        return self.require_withdrawal(withdrawal_id)

    # --- reads ---

    def get_withdrawal(self, withdrawal_id: str) -> dict[str, Any] | None:
        """Look up a withdrawal by ID. Returns None if not found."""
        return self._store.fetch_one(
            f"SELECT {_WITHDRAWAL_COLUMNS_SQL} FROM withdrawals WHERE withdrawal_id = ?",
            (withdrawal_id,),
        )

    def require_withdrawal(self, withdrawal_id: str) -> dict[str, Any]:
        """Look up a withdrawal by ID, raising WITHDRAWAL_NOT_FOUND if absent."""
        withdrawal = self.get_withdrawal(withdrawal_id)
        if withdrawal is None:
            raise ServiceError("WITHDRAWAL_NOT_FOUND", "Withdrawal not found", 404, {})
        return withdrawal

    def list_pending(self) -> list[dict[str, Any]]:
        """Pending withdrawals, oldest first (the admin's payout queue)."""
        return self._store.fetch_all(
            f"SELECT {_WITHDRAWAL_COLUMNS_SQL} FROM withdrawals WHERE status = 'pending' "
            "ORDER BY requested_at, withdrawal_id",
        )

    def list_for_worker(self, worker_id: str) -> list[dict[str, Any]]:
        """A worker's withdrawals, newest first."""
        return self._store.fetch_all(
            f"SELECT {_WITHDRAWAL_COLUMNS_SQL} FROM withdrawals WHERE worker_id = ? "
            "ORDER BY requested_at DESC, withdrawal_id",
            (worker_id,),
        )

    def total_paid_out(self) -> int:
        """Coins that left the platform through withdrawals (pending or approved)."""
        row = self._store.fetch_one(
            "SELECT COALESCE(SUM(coin_amount), 0) AS total FROM withdrawals",
        )
        if row is None:
            return 0
        return int(row["total"])
