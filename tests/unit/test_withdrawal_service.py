"""WithdrawalService tests."""

from __future__ import annotations

import pytest

from coin_ledger_service.core.exceptions import ServiceError

from .conftest import WITHDRAWAL_MINIMUM, balance

pytestmark = pytest.mark.unit


@pytest.fixture
def funded_worker(accounts):
    with accounts.transaction():
        accounts.adjust_balance("worker-1", 500, "submission_payout", "sub-seed")
    return "worker-1"


def _request(withdrawals, worker_id, coins=300, cash=30.0):
    return withdrawals.request(worker_id, coins, cash, "paypal", "w1@paypal.example")


def test_request_debits_coins_immediately(accounts, withdrawals, funded_worker):
    withdrawal = _request(withdrawals, funded_worker)

    assert withdrawal["status"] == "pending"
    assert withdrawal["coin_amount"] == 300
    assert withdrawal["balance_after"] == 200
    assert balance(accounts, funded_worker) == 200

    hold = accounts.get_transactions(funded_worker)[-1]
    assert hold["type"] == "withdrawal_hold"
    assert hold["amount"] == -300
    assert hold["tx_id"] == withdrawal["tx_id"]


def test_approve_does_not_touch_balance(accounts, withdrawals, funded_worker):
    withdrawal = _request(withdrawals, funded_worker)
    approved = withdrawals.approve(withdrawal["withdrawal_id"], "admin-1")

    assert approved["status"] == "approved"
    assert approved["approved_by"] == "admin-1"
    assert balance(accounts, funded_worker) == 200
    assert len(accounts.get_transactions(funded_worker)) == 2


def test_approve_twice_rejected(accounts, withdrawals, funded_worker):
    withdrawal = _request(withdrawals, funded_worker)
    withdrawals.approve(withdrawal["withdrawal_id"], "admin-1")

    with pytest.raises(ServiceError) as exc_info:
        withdrawals.approve(withdrawal["withdrawal_id"], "admin-1")
    assert exc_info.value.error == "ALREADY_RESOLVED"


def test_below_minimum_rejected(accounts, withdrawals, funded_worker):
    with pytest.raises(ServiceError) as exc_info:
        _request(withdrawals, funded_worker, coins=WITHDRAWAL_MINIMUM - 1)

    assert exc_info.value.error == "BELOW_MINIMUM"
    assert exc_info.value.details == {"minimum_coins": WITHDRAWAL_MINIMUM}
    assert balance(accounts, funded_worker) == 500


def test_exact_minimum_allowed(accounts, withdrawals, funded_worker):
    withdrawal = _request(withdrawals, funded_worker, coins=WITHDRAWAL_MINIMUM)
    assert withdrawal["balance_after"] == 500 - WITHDRAWAL_MINIMUM


def test_insufficient_balance(accounts, withdrawals, funded_worker):
    with pytest.raises(ServiceError) as exc_info:
        _request(withdrawals, funded_worker, coins=501)

    assert exc_info.value.error == "INSUFFICIENT_BALANCE"
    assert withdrawals.list_for_worker(funded_worker) == []


def test_second_request_cannot_overspend(accounts, withdrawals, funded_worker):
    _request(withdrawals, funded_worker, coins=300)
    with pytest.raises(ServiceError) as exc_info:
        _request(withdrawals, funded_worker, coins=300)
    assert exc_info.value.error == "INSUFFICIENT_BALANCE"
    assert balance(accounts, funded_worker) == 200


@pytest.mark.parametrize(
    ("coins", "cash", "system", "number", "error"),
    [
        (0, 10.0, "paypal", "acct", "INVALID_AMOUNT"),
        (300, 0, "paypal", "acct", "INVALID_AMOUNT"),
        (10**20, 10.0, "paypal", "acct", "INVALID_AMOUNT"),
        (300, float("nan"), "paypal", "acct", "INVALID_AMOUNT"),
        (300, float("inf"), "paypal", "acct", "INVALID_AMOUNT"),
        (300, 10**400, "paypal", "acct", "INVALID_AMOUNT"),
        (300, 10.0, "", "acct", "INVALID_PAYLOAD"),
        (300, 10.0, "paypal", None, "INVALID_PAYLOAD"),
    ],
)
def test_invalid_requests(accounts, withdrawals, funded_worker, coins, cash, system, number, error):
    with pytest.raises(ServiceError) as exc_info:
        withdrawals.request(funded_worker, coins, cash, system, number)
    assert exc_info.value.error == error


def test_only_workers_request_and_only_admins_approve(accounts, withdrawals, funded_worker):
    with pytest.raises(ServiceError) as exc_info:
        _request(withdrawals, "buyer-1")
    assert exc_info.value.error == "FORBIDDEN"

    withdrawal = _request(withdrawals, funded_worker)
    with pytest.raises(ServiceError) as exc_info:
        withdrawals.approve(withdrawal["withdrawal_id"], "buyer-1")
    assert exc_info.value.error == "FORBIDDEN"


def test_pending_queue(accounts, withdrawals, funded_worker):
    first = _request(withdrawals, funded_worker, coins=200)
    second = _request(withdrawals, funded_worker, coins=200)
    withdrawals.approve(first["withdrawal_id"], "admin-1")

    assert [w["withdrawal_id"] for w in withdrawals.list_pending()] == [second["withdrawal_id"]]
    assert withdrawals.total_paid_out() == 400


def test_unknown_withdrawal(accounts, withdrawals):
    with pytest.raises(ServiceError) as exc_info:
        withdrawals.approve("wd-missing", "admin-1")
    assert exc_info.value.error == "WITHDRAWAL_NOT_FOUND"
