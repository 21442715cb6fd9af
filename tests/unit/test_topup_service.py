"""TopUpService tests: idempotent crediting and the gateway confirmation flow."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.services.topup_service import TopUpService

from .conftest import balance

pytestmark = pytest.mark.unit


def test_credit_same_reference_is_applied_once(accounts, topups):
    first = topups.credit("buyer-1", 10.0, 100, "txn-42")
    second = topups.credit("buyer-1", 10.0, 100, "txn-42")

    assert second == first
    assert balance(accounts, "buyer-1") == 1100
    credits = [tx for tx in accounts.get_transactions("buyer-1") if tx["type"] == "top_up"]
    assert len(credits) == 1
    assert credits[0]["reference"] == "txn-42"


def test_replay_with_different_values_rejected(accounts, topups):
    topups.credit("buyer-1", 10.0, 100, "txn-42")

    with pytest.raises(ServiceError) as exc_info:
        topups.credit("buyer-1", 10.0, 150, "txn-42")

    assert exc_info.value.error == "PAYLOAD_MISMATCH"
    assert exc_info.value.status_code == 409
    assert balance(accounts, "buyer-1") == 1100


def test_reference_cannot_move_between_accounts(accounts, topups):
    accounts.create_account("buyer-2", "b2@example.com", "buyer")
    topups.credit("buyer-1", 10.0, 100, "txn-42")

    with pytest.raises(ServiceError) as exc_info:
        topups.credit("buyer-2", 10.0, 100, "txn-42")
    assert exc_info.value.error == "PAYLOAD_MISMATCH"
    assert balance(accounts, "buyer-2") == 0


def test_unknown_account_records_nothing(accounts, topups):
    with pytest.raises(ServiceError) as exc_info:
        topups.credit("nobody", 10.0, 100, "txn-1")
    assert exc_info.value.error == "ACCOUNT_NOT_FOUND"
    assert topups.find_by_external_ref("txn-1") is None


@pytest.mark.parametrize(
    ("cash", "coins", "ref", "error"),
    [
        (10.0, 0, "txn-1", "INVALID_AMOUNT"),
        (0, 100, "txn-1", "INVALID_AMOUNT"),
        (10.0, 100, "  ", "INVALID_PAYLOAD"),
        (float("inf"), 100, "txn-1", "INVALID_AMOUNT"),
        (float("nan"), 100, "txn-1", "INVALID_AMOUNT"),
        (10**400, 100, "txn-1", "INVALID_AMOUNT"),
        (10.0, 2**63, "txn-1", "INVALID_AMOUNT"),
    ],
)
def test_invalid_credit(accounts, topups, cash, coins, ref, error):
    with pytest.raises(ServiceError) as exc_info:
        topups.credit("buyer-1", cash, coins, ref)
    assert exc_info.value.error == error


def test_coins_must_match_captured_cash(accounts, topups):
    with pytest.raises(ServiceError) as exc_info:
        topups.credit("buyer-1", 1.0, 10**9, "txn-1")

    assert exc_info.value.error == "DEPOSIT_AMOUNT_MISMATCH"
    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {
        "external_ref": "txn-1",
        "cash_amount": 1.0,
        "coins_per_cash_unit": 10,
    }
    assert balance(accounts, "buyer-1") == 1000
    assert topups.find_by_external_ref("txn-1") is None


def test_totals_and_listing(accounts, topups):
    topups.credit("buyer-1", 10.0, 100, "txn-1")
    topups.credit("buyer-1", 5.0, 50, "txn-2")

    assert topups.total_minted() == 150
    assert {t["external_ref"] for t in topups.list_for_account("buyer-1")} == {"txn-1", "txn-2"}


class TestConfirmedDeposit:
    async def test_gateway_amount_is_recorded(self, accounts, store):
        gateway = AsyncMock()
        gateway.confirm_deposit = AsyncMock(return_value=12.5)
        service = TopUpService(store=store, payment_gateway=gateway, coins_per_cash_unit=10)

        top_up = await service.credit_confirmed_deposit("buyer-1", 125, "txn-9")

        gateway.confirm_deposit.assert_awaited_once_with("txn-9")
        assert top_up["cash_amount"] == 12.5
        assert top_up["coin_amount"] == 125
        assert top_up["balance_after"] == 1125

    async def test_replay_skips_gateway(self, accounts, store):
        gateway = AsyncMock()
        gateway.confirm_deposit = AsyncMock(return_value=12.5)
        service = TopUpService(store=store, payment_gateway=gateway, coins_per_cash_unit=10)

        first = await service.credit_confirmed_deposit("buyer-1", 125, "txn-9")
        second = await service.credit_confirmed_deposit("buyer-1", 125, "txn-9")

        assert second == first
        assert gateway.confirm_deposit.await_count == 1
        assert balance(accounts, "buyer-1") == 1125

    async def test_gateway_failure_credits_nothing(self, accounts, store):
        gateway = AsyncMock()
        gateway.confirm_deposit = AsyncMock(
            side_effect=ServiceError("DEPOSIT_NOT_CAPTURED", "Deposit has not been captured", 409)
        )
        service = TopUpService(store=store, payment_gateway=gateway, coins_per_cash_unit=10)

        with pytest.raises(ServiceError) as exc_info:
            await service.credit_confirmed_deposit("buyer-1", 125, "txn-9")

        assert exc_info.value.error == "DEPOSIT_NOT_CAPTURED"
        assert balance(accounts, "buyer-1") == 1000
        assert service.find_by_external_ref("txn-9") is None

    async def test_invalid_request_never_reaches_gateway(self, accounts, store):
        gateway = AsyncMock()
        service = TopUpService(store=store, payment_gateway=gateway, coins_per_cash_unit=10)

        with pytest.raises(ServiceError) as exc_info:
            await service.credit_confirmed_deposit("buyer-1", -5, "txn-9")

        assert exc_info.value.error == "INVALID_AMOUNT"
        gateway.confirm_deposit.assert_not_called()

    async def test_coins_checked_against_gateway_amount(self, accounts, store):
        gateway = AsyncMock()
        gateway.confirm_deposit = AsyncMock(return_value=1.0)
        service = TopUpService(store=store, payment_gateway=gateway, coins_per_cash_unit=10)

        with pytest.raises(ServiceError) as exc_info:
            await service.credit_confirmed_deposit("buyer-1", 10**9, "txn-9")

        assert exc_info.value.error == "DEPOSIT_AMOUNT_MISMATCH"
        assert balance(accounts, "buyer-1") == 1000
        assert service.total_minted() == 0
