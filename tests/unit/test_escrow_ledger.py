"""EscrowLedger tests: task creation, cancellation and slot movement."""

from __future__ import annotations

import pytest

from coin_ledger_service.core.exceptions import ServiceError

from .conftest import balance

pytestmark = pytest.mark.unit


def _create(escrow_ledger, payable=100, slots=3, buyer="buyer-1"):
    return escrow_ledger.create_task(buyer, payable, slots, "Label images", "Tag 50 photos")


class TestCreateTask:
    def test_locks_escrow_for_every_slot(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)

        assert task["status"] == "open"
        assert task["slot_count"] == 3
        assert task["open_slots"] == 3
        assert task["payable_per_worker"] == 100
        assert balance(accounts, "buyer-1") == 700
        assert escrow_ledger.escrow_held(task["task_id"]) == 300

        lock = accounts.get_transactions("buyer-1")[-1]
        assert lock["type"] == "escrow_lock"
        assert lock["amount"] == -300
        assert lock["reference"] == task["task_id"]

    def test_insufficient_balance_creates_nothing(self, accounts, escrow_ledger):
        with pytest.raises(ServiceError) as exc_info:
            _create(escrow_ledger, payable=600, slots=2)

        assert exc_info.value.error == "INSUFFICIENT_BALANCE"
        assert balance(accounts, "buyer-1") == 1000
        assert escrow_ledger.list_tasks_for_buyer("buyer-1") == []

    @pytest.mark.parametrize(
        ("payable", "slots"),
        [(0, 1), (10, 0), (-5, 2), (10, True), (2**63, 1), (10**18, 10)],
    )
    def test_invalid_amounts(self, accounts, escrow_ledger, payable, slots):
        with pytest.raises(ServiceError) as exc_info:
            _create(escrow_ledger, payable=payable, slots=slots)
        assert exc_info.value.error == "INVALID_AMOUNT"
        assert balance(accounts, "buyer-1") == 1000

    def test_blank_title_rejected(self, accounts, escrow_ledger):
        with pytest.raises(ServiceError) as exc_info:
            escrow_ledger.create_task("buyer-1", 10, 1, "  ", "detail")
        assert exc_info.value.error == "INVALID_PAYLOAD"

    def test_worker_cannot_create_task(self, accounts, escrow_ledger):
        with pytest.raises(ServiceError) as exc_info:
            _create(escrow_ledger, buyer="worker-1")
        assert exc_info.value.error == "FORBIDDEN"


class TestCancelTask:
    def test_cancel_restores_buyer_balance(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)
        cancelled = escrow_ledger.cancel_task(task["task_id"], "buyer-1")

        assert cancelled["status"] == "cancelled"
        assert cancelled["cancelled_at"] is not None
        assert balance(accounts, "buyer-1") == 1000
        assert escrow_ledger.escrow_held(task["task_id"]) == 0

    def test_cancel_refunds_only_open_slots(self, accounts, escrow_ledger, workflow):
        task = _create(escrow_ledger)
        workflow.submit(task["task_id"], "worker-1", "done")

        escrow_ledger.cancel_task(task["task_id"], "buyer-1")

        assert balance(accounts, "buyer-1") == 900
        assert escrow_ledger.escrow_held(task["task_id"]) == 100

    def test_cancel_twice_rejected(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)
        escrow_ledger.cancel_task(task["task_id"], "buyer-1")

        with pytest.raises(ServiceError) as exc_info:
            escrow_ledger.cancel_task(task["task_id"], "buyer-1")

        assert exc_info.value.error == "INVALID_STATE_TRANSITION"
        assert balance(accounts, "buyer-1") == 1000

    def test_only_owner_can_cancel(self, accounts, escrow_ledger):
        accounts.create_account("buyer-2", "b2@example.com", "buyer", 10)
        task = _create(escrow_ledger)

        with pytest.raises(ServiceError) as exc_info:
            escrow_ledger.cancel_task(task["task_id"], "buyer-2")
        assert exc_info.value.error == "FORBIDDEN"

    def test_unknown_task(self, accounts, escrow_ledger):
        with pytest.raises(ServiceError) as exc_info:
            escrow_ledger.cancel_task("task-missing", "buyer-1")
        assert exc_info.value.error == "TASK_NOT_FOUND"


class TestReleaseSlot:
    def test_requires_transaction(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)
        with pytest.raises(RuntimeError):
            escrow_ledger.release_slot(task["task_id"], "consume")

    def test_consume_last_slot_completes_task(self, accounts, escrow_ledger):
        task = _create(escrow_ledger, slots=1)
        with accounts.transaction():
            updated = escrow_ledger.release_slot(task["task_id"], "consume")

        assert updated["open_slots"] == 0
        assert updated["status"] == "completed"
        assert updated["completed_at"] is not None

    def test_consume_with_no_open_slots_rejected(self, accounts, escrow_ledger):
        task = _create(escrow_ledger, slots=1)
        with accounts.transaction():
            escrow_ledger.release_slot(task["task_id"], "consume")

        with pytest.raises(ServiceError) as exc_info, accounts.transaction():
            escrow_ledger.release_slot(task["task_id"], "consume")
        assert exc_info.value.error == "INVALID_STATE_TRANSITION"

    def test_reopen_returns_completed_task_to_open(self, accounts, escrow_ledger):
        task = _create(escrow_ledger, slots=1)
        with accounts.transaction():
            escrow_ledger.release_slot(task["task_id"], "consume")
        with accounts.transaction():
            updated = escrow_ledger.release_slot(task["task_id"], "reopen")

        assert updated["open_slots"] == 1
        assert updated["status"] == "open"
        assert updated["completed_at"] is None

    def test_reopen_beyond_slot_count_rejected(self, accounts, escrow_ledger):
        task = _create(escrow_ledger, slots=2)
        with pytest.raises(ServiceError) as exc_info, accounts.transaction():
            escrow_ledger.release_slot(task["task_id"], "reopen")
        assert exc_info.value.error == "INVALID_STATE_TRANSITION"
        assert escrow_ledger.require_task(task["task_id"])["open_slots"] == 2


class TestUpdateTask:
    def test_edits_title_only(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)
        updated = escrow_ledger.update_task(task["task_id"], "buyer-1", title="New title")

        assert updated["title"] == "New title"
        assert updated["detail"] == task["detail"]
        assert updated["payable_per_worker"] == task["payable_per_worker"]
        assert balance(accounts, "buyer-1") == 700

    def test_nothing_to_update(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)
        with pytest.raises(ServiceError) as exc_info:
            escrow_ledger.update_task(task["task_id"], "buyer-1")
        assert exc_info.value.error == "INVALID_PAYLOAD"

    def test_cancelled_task_cannot_be_edited(self, accounts, escrow_ledger):
        task = _create(escrow_ledger)
        escrow_ledger.cancel_task(task["task_id"], "buyer-1")
        with pytest.raises(ServiceError) as exc_info:
            escrow_ledger.update_task(task["task_id"], "buyer-1", detail="more")
        assert exc_info.value.error == "INVALID_STATE_TRANSITION"


def test_list_open_tasks_and_stats(accounts, escrow_ledger):
    first = _create(escrow_ledger, payable=10, slots=2)
    second = _create(escrow_ledger, payable=20, slots=1)
    escrow_ledger.cancel_task(second["task_id"], "buyer-1")

    open_ids = [task["task_id"] for task in escrow_ledger.list_open_tasks()]
    assert open_ids == [first["task_id"]]

    stats = escrow_ledger.get_stats()
    assert stats["total_tasks"] == 2
    assert stats["tasks_by_status"] == {"open": 1, "completed": 0, "cancelled": 1}
    assert stats["total_escrowed"] == 20


def test_coins_are_conserved(accounts, escrow_ledger, workflow):
    task = _create(escrow_ledger, payable=100, slots=3)
    first = workflow.submit(task["task_id"], "worker-1", "one")
    workflow.submit(task["task_id"], "worker-2", "two")
    workflow.approve(first["submission_id"], "buyer-1")

    assert accounts.total_balances() + escrow_ledger.escrow_held() == 1000
