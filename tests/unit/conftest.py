"""Fixtures for component tests against a temporary SQLite ledger."""

from __future__ import annotations

import pytest

from coin_ledger_service.services.escrow_ledger import EscrowLedger
from coin_ledger_service.services.ledger_store import LedgerStore
from coin_ledger_service.services.submission_workflow import SubmissionWorkflow
from coin_ledger_service.services.topup_service import TopUpService
from coin_ledger_service.services.withdrawal_service import WithdrawalService

WITHDRAWAL_MINIMUM = 200
COINS_PER_CASH_UNIT = 10


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "coin-ledger.db")


@pytest.fixture
def store(db_path):
    ledger_store = LedgerStore(db_path=db_path)
    yield ledger_store
    ledger_store.close()


@pytest.fixture
def escrow_ledger(store):
    return EscrowLedger(store=store)


@pytest.fixture
def workflow(store, escrow_ledger):
    return SubmissionWorkflow(store=store, escrow_ledger=escrow_ledger)


@pytest.fixture
def withdrawals(store):
    return WithdrawalService(store=store, minimum_coins=WITHDRAWAL_MINIMUM)


@pytest.fixture
def topups(store):
    return TopUpService(store=store, payment_gateway=None, coins_per_cash_unit=COINS_PER_CASH_UNIT)


@pytest.fixture
def accounts(store):
    """A buyer with 1000 coins, two workers, and an admin."""
    store.create_account("buyer-1", "buyer@example.com", "buyer", 1000)
    store.create_account("worker-1", "w1@example.com", "worker")
    store.create_account("worker-2", "w2@example.com", "worker")
    store.create_account("admin-1", "admin@example.com", "admin")
    return store


def balance(store: LedgerStore, account_id: str) -> int:
    """Current balance of an account."""
    return int(store.require_account(account_id)["balance"])
