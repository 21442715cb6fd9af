"""Coin credits for verified cash deposits, applied at most once per external reference."""

from __future__ import annotations

import math
import sqlite3
from typing import TYPE_CHECKING, Any

from starlette.concurrency import run_in_threadpool

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.services.amounts import require_cash_amount, require_coin_amount

if TYPE_CHECKING:
    from coin_ledger_service.clients.payment_gateway_client import PaymentGatewayClient
    from coin_ledger_service.services.ledger_store import LedgerStore

_TOP_UP_COLUMNS_SQL = (
    "top_up_id, account_id, cash_amount, coin_amount, external_ref, tx_id, "
    "balance_after, recorded_at"
)


def _validate_request(coin_amount: object, external_ref: object) -> None:
    require_coin_amount(coin_amount, "coin_amount")
    if not isinstance(external_ref, str) or not external_ref.strip():
        raise ServiceError(
            "INVALID_PAYLOAD",
            "external_ref must be a non-empty string",
            400,
            {"field": "external_ref"},
        )


class TopUpService:
    """
    Records deposits and credits the payer's coins.

    This is the only path that mints coins, so every credit is keyed by the
    gateway's ``external_ref``: a retried confirmation returns the recorded
    result instead of crediting again. The coins credited must equal the
    captured cash times ``coins_per_cash_unit``.
    """

    def __init__(
        self,
        store: LedgerStore,
        payment_gateway: PaymentGatewayClient | None,
        coins_per_cash_unit: int,
    ) -> None:
        self._store = store
        self._payment_gateway = payment_gateway
        self._coins_per_cash_unit = coins_per_cash_unit
        self._logger = get_logger(__name__)

    def credit(
        self,
        account_id: str,
        cash_amount: float,
        coin_amount: int,
        external_ref: str,
    ) -> dict[str, Any]:
        """
        Record a top-up and credit ``coin_amount`` coins.

        Returns:
            The top-up record, including ``tx_id`` and ``balance_after``.
            A replay of an already-applied ``external_ref`` returns the
            original record unchanged.

        Raises:
            ServiceError: INVALID_AMOUNT, INVALID_PAYLOAD, ACCOUNT_NOT_FOUND,
                PAYLOAD_MISMATCH if the reference was used with other values,
                DEPOSIT_AMOUNT_MISMATCH if the coins do not match the cash.
        """
        _validate_request(coin_amount, external_ref)
        cash_amount = require_cash_amount(cash_amount, "cash_amount")

        top_up_id = self._store.new_id("topup")

        try:
            with self._store.transaction():
                existing = self.find_by_external_ref(external_ref)
                if existing is not None:
                    return self._replay(existing, account_id, cash_amount, coin_amount)
                self._check_rate(cash_amount, coin_amount, external_ref)

                credit = self._store.adjust_balance(account_id, coin_amount, "top_up", external_ref)
                self._store.execute(
                    f"INSERT INTO top_ups ({_TOP_UP_COLUMNS_SQL}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        top_up_id,
                        account_id,
                        float(cash_amount),
                        coin_amount,
                        external_ref,
                        credit["tx_id"],
                        credit["balance_after"],
                        self._store.now(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            existing = self.find_by_external_ref(external_ref)
            if existing is None:
                msg = "Duplicate top-up detected but could not load existing record"
                raise RuntimeError(msg) from exc
            return self._replay(existing, account_id, cash_amount, coin_amount)

        self._logger.info(
            "Top-up credited",
            extra={
                "top_up_id": top_up_id,
                "account_id": account_id,
                "coin_amount": coin_amount,
                "cash_amount": cash_amount,
                "external_ref": external_ref,
                "balance_after": credit["balance_after"],
            },
        )
        record = self.find_by_external_ref(external_ref)
        if record is None:
            msg = "Top-up not found after insert"
            raise RuntimeError(msg)
        return record

    async def credit_confirmed_deposit(
        self,
        account_id: str,
        coin_amount: int,
        external_ref: str,
    ) -> dict[str, Any]:
        """
        Confirm a deposit with the payment gateway, then credit it.

        The gateway call happens before any database transaction is opened.
        An already-applied reference is returned without contacting the
        gateway again.

        Raises:
            ServiceError: everything :meth:`credit` raises, plus the gateway
                client's DEPOSIT_NOT_FOUND, DEPOSIT_NOT_CAPTURED and
                PAYMENT_GATEWAY_UNAVAILABLE.
        """
        _validate_request(coin_amount, external_ref)
        existing = await run_in_threadpool(self.find_by_external_ref, external_ref)
        if existing is not None:
            cash = existing["cash_amount"]
            return await run_in_threadpool(self.credit, account_id, cash, coin_amount, external_ref)

        if self._payment_gateway is None:
            msg = "Payment gateway client not initialized"
            raise RuntimeError(msg)

        cash_amount = await self._payment_gateway.confirm_deposit(external_ref)
        return await run_in_threadpool(
            self.credit, account_id, cash_amount, coin_amount, external_ref
        )

    def _check_rate(self, cash_amount: float, coin_amount: int, external_ref: str) -> None:
        expected = cash_amount * self._coins_per_cash_unit
        if not math.isclose(coin_amount, expected, rel_tol=1e-9, abs_tol=1e-6):
            raise ServiceError(
                "DEPOSIT_AMOUNT_MISMATCH",
                "coin_amount does not match the captured deposit",
                409,
                {
                    "external_ref": external_ref,
                    "cash_amount": cash_amount,
                    "coins_per_cash_unit": self._coins_per_cash_unit,
                },
            )

    def _replay(
        self,
        existing: dict[str, Any],
        account_id: str,
        cash_amount: float,
        coin_amount: int,
    ) -> dict[str, Any]:
        if (
            existing["account_id"] != account_id
            or existing["coin_amount"] != coin_amount
            or float(existing["cash_amount"]) != float(cash_amount)
        ):
            raise ServiceError(
                "PAYLOAD_MISMATCH",
                "external_ref was already applied with different values",
                409,
                {"external_ref": existing["external_ref"]},
            )
        self._logger.info(
            "Top-up replayed",
            extra={"top_up_id": existing["top_up_id"], "external_ref": existing["external_ref"]},
        )
        return existing

    # --- reads ---

    def find_by_external_ref(self, external_ref: str) -> dict[str, Any] | None:
        """Look up a top-up by its gateway reference."""
        return self._store.fetch_one(
            f"SELECT {_TOP_UP_COLUMNS_SQL} FROM top_ups WHERE external_ref = ?",
            (external_ref,),
        )

    def list_for_account(self, account_id: str) -> list[dict[str, Any]]:
        """An account's top-ups, newest first."""
        return self._store.fetch_all(
            f"SELECT {_TOP_UP_COLUMNS_SQL} FROM top_ups WHERE account_id = ? "
            "ORDER BY recorded_at DESC, top_up_id",
            (account_id,),
        )

    def total_minted(self) -> int:
        """Coins credited by every top-up."""
        row = self._store.fetch_one("SELECT COALESCE(SUM(coin_amount), 0) AS total FROM top_ups")
        if row is None:
            return 0
        return int(row["total"])
