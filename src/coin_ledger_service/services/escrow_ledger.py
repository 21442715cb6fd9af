"""Task lifecycle and the coin escrow held against each task's slots."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, cast

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.services.amounts import MAX_COINS, require_coin_amount
from coin_ledger_service.services.authorization import authorize_actor

if TYPE_CHECKING:
    from coin_ledger_service.services.ledger_store import LedgerStore

SlotDirection = Literal["consume", "reopen"]

TASK_STATUSES: tuple[str, ...] = ("open", "completed", "cancelled")

_TASK_COLUMNS_SQL = (
    "task_id, buyer_id, title, detail, payable_per_worker, slot_count, open_slots, "
    "status, created_at, updated_at, completed_at, cancelled_at"
)


def _require_text(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"{field} must be a non-empty string",
            400,
            {"field": field},
        )
    return value


class EscrowLedger:
    """
    Owns tasks and the buyer coins held in escrow for them.

    While a task is open, the escrow held for it is
    ``(open_slots + pending submissions) * payable_per_worker``: each open
    slot is funded, and each pending submission holds the escrow of the
    slot it claimed.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def create_task(
        self,
        buyer_id: str,
        payable_per_worker: int,
        slot_count: int,
        title: str,
        detail: str,
    ) -> dict[str, Any]:
        """
        Create a task and lock ``slot_count * payable_per_worker`` coins.

        The debit and the task insert commit together or not at all.

        Raises:
            ServiceError: INVALID_AMOUNT, INVALID_PAYLOAD, ACCOUNT_NOT_FOUND,
                FORBIDDEN, INSUFFICIENT_BALANCE.
        """
        payable_per_worker = require_coin_amount(payable_per_worker, "payable_per_worker")
        slot_count = require_coin_amount(slot_count, "slot_count")
        title = _require_text(title, "title")
        detail = _require_text(detail, "detail")

        authorize_actor(self._store, buyer_id, "create_task")

        total = payable_per_worker * slot_count
        if total > MAX_COINS:
            raise ServiceError(
                "INVALID_AMOUNT",
                "payable_per_worker * slot_count is too large",
                400,
                {"maximum": MAX_COINS},
            )
        task_id = self._store.new_id("task")

        with self._store.transaction():
            debit = self._store.adjust_balance(buyer_id, -total, "escrow_lock", task_id)
            now = self._store.now()
            self._store.execute(
                f"INSERT INTO tasks ({_TASK_COLUMNS_SQL}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, 'open', ?, ?, NULL, NULL)",
                (
                    task_id,
                    buyer_id,
                    title,
                    detail,
                    payable_per_worker,
                    slot_count,
                    slot_count,
                    now,
                    now,
                ),
            )

        self._logger.info(
            "Task created",
            extra={
                "task_id": task_id,
                "buyer_id": buyer_id,
                "payable_per_worker": payable_per_worker,
                "slot_count": slot_count,
                "escrow_locked": total,
                "balance_after": debit["balance_after"],
            },
        )
        return self.require_task(task_id)

    def update_task(
        self,
        task_id: str,
        requester_id: str,
        title: str | None = None,
        detail: str | None = None,
    ) -> dict[str, Any]:
        """
        Edit a task's descriptive fields.

        Price and slot count are fixed at creation, so escrow is never
        affected by an edit.

        Raises:
            ServiceError: TASK_NOT_FOUND, FORBIDDEN, INVALID_STATE_TRANSITION,
                INVALID_PAYLOAD.
        """
        if title is None and detail is None:
            raise ServiceError("INVALID_PAYLOAD", "Nothing to update", 400, {})
        if title is not None:
            _require_text(title, "title")
        if detail is not None:
            _require_text(detail, "detail")

        authorize_actor(self._store, requester_id, "update_task")

        with self._store.transaction():
            task = self.require_task(task_id)
            self._require_owner(task, requester_id)
            if task["status"] == "cancelled":
                raise ServiceError(
                    "INVALID_STATE_TRANSITION",
                    "Cancelled tasks cannot be edited",
                    409,
                    {"status": task["status"]},
                )
            self._store.execute(
                "UPDATE tasks SET title = COALESCE(?, title), detail = COALESCE(?, detail), "
                "updated_at = ? WHERE task_id = ?",
                (title, detail, self._store.now(), task_id),
            )

        self._logger.info("Task updated", extra={"task_id": task_id})
        return self.require_task(task_id)

    def cancel_task(self, task_id: str, requester_id: str) -> dict[str, Any]:
        """
        Cancel an open task and refund the escrow of its open slots.

        ``open_slots`` keeps its value at cancellation for audit. Slots
        already claimed by pending submissions stay in escrow until those
        submissions are resolved.

        Raises:
            ServiceError: TASK_NOT_FOUND, FORBIDDEN, INVALID_STATE_TRANSITION.
        """
        authorize_actor(self._store, requester_id, "cancel_task")

        with self._store.transaction():
            task = self.require_task(task_id)
            self._require_owner(task, requester_id)
            if task["status"] != "open":
                raise ServiceError(
                    "INVALID_STATE_TRANSITION",
                    "Only open tasks can be cancelled",
                    409,
                    {"status": task["status"]},
                )

            now = self._store.now()
            rowcount = self._store.execute(
                "UPDATE tasks SET status = 'cancelled', cancelled_at = ?, updated_at = ? "
                "WHERE task_id = ? AND status = 'open'",
                (now, now, task_id),
            )
            if rowcount != 1:
                raise ServiceError(
                    "INVALID_STATE_TRANSITION",
                    "Only open tasks can be cancelled",
                    409,
                    {},
                )

            refund = cast("int", task["open_slots"]) * cast("int", task["payable_per_worker"])
            if refund > 0:
                self._store.adjust_balance(task["buyer_id"], refund, "escrow_refund", task_id)

        self._logger.info(
            "Task cancelled",
            extra={"task_id": task_id, "buyer_id": task["buyer_id"], "refund": refund},
        )
        return self.require_task(task_id)

    def release_slot(self, task_id: str, direction: SlotDirection) -> dict[str, Any]:
        """
        Move one slot of a task. Must run inside the caller's transaction.

        ``consume`` claims an open slot; the task completes when none remain.
        ``reopen`` returns a claimed slot: a completed task becomes open
        again, and on a cancelled task the slot's escrow goes back to the
        buyer instead.

        Returns:
            The updated task record.

        Raises:
            ServiceError: TASK_NOT_FOUND, INVALID_STATE_TRANSITION.
        """
        if not self._store.in_transaction():
            msg = "release_slot must run inside LedgerStore.transaction()"
            raise RuntimeError(msg)

        task = self.require_task(task_id)
        now = self._store.now()

        if direction == "consume":
            if task["status"] != "open" or task["open_slots"] <= 0:
                raise ServiceError(
                    "INVALID_STATE_TRANSITION",
                    "Task has no open slots",
                    409,
                    {"status": task["status"], "open_slots": task["open_slots"]},
                )
            rowcount = self._store.execute(
                "UPDATE tasks SET open_slots = open_slots - 1, "
                "status = CASE WHEN open_slots - 1 = 0 THEN 'completed' ELSE status END, "
                "completed_at = CASE WHEN open_slots - 1 = 0 THEN ? ELSE completed_at END, "
                "updated_at = ? "
                "WHERE task_id = ? AND status = 'open' AND open_slots > 0",
                (now, now, task_id),
            )
            if rowcount != 1:
                raise ServiceError(
                    "INVALID_STATE_TRANSITION",
                    "Task has no open slots",
                    409,
                    {},
                )

        elif direction == "reopen":
            if task["status"] == "cancelled":
                self._store.adjust_balance(
                    task["buyer_id"],
                    cast("int", task["payable_per_worker"]),
                    "escrow_refund",
                    task_id,
                )
            else:
                if task["open_slots"] >= task["slot_count"]:
                    raise ServiceError(
                        "INVALID_STATE_TRANSITION",
                        "Task has no claimed slot to reopen",
                        409,
                        {"open_slots": task["open_slots"], "slot_count": task["slot_count"]},
                    )
                self._store.execute(
                    "UPDATE tasks SET open_slots = open_slots + 1, status = 'open', "
                    "completed_at = NULL, updated_at = ? WHERE task_id = ?",
                    (now, task_id),
                )

        else:
            msg = f"Unknown slot direction: {direction}"
            raise ValueError(msg)

        updated = self.require_task(task_id)
        self._logger.info(
            "Task slot released",
            extra={
                "task_id": task_id,
                "direction": direction,
                "open_slots": updated["open_slots"],
                "status": updated["status"],
            },
        )
        return updated

    # --- reads ---

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Look up a task by ID. Returns None if not found."""
        return self._store.fetch_one(
            f"SELECT {_TASK_COLUMNS_SQL} FROM tasks WHERE task_id = ?",
            (task_id,),
        )

    def require_task(self, task_id: str) -> dict[str, Any]:
        """Look up a task by ID, raising TASK_NOT_FOUND if absent."""
        task = self.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return task

    def list_open_tasks(self) -> list[dict[str, Any]]:
        """Open tasks, newest first."""
        return self._store.fetch_all(
            f"SELECT {_TASK_COLUMNS_SQL} FROM tasks WHERE status = 'open' "
            "ORDER BY created_at DESC, task_id",
        )

    def list_tasks_for_buyer(self, buyer_id: str) -> list[dict[str, Any]]:
        """All tasks posted by a buyer, newest first."""
        return self._store.fetch_all(
            f"SELECT {_TASK_COLUMNS_SQL} FROM tasks WHERE buyer_id = ? "
            "ORDER BY created_at DESC, task_id",
            (buyer_id,),
        )

    def escrow_held(self, task_id: str | None = None) -> int:
        """
        Coins currently held in escrow, for one task or platform-wide.

        Counts the open slots of open tasks plus every pending submission's
        claimed slot (including those on cancelled tasks).
        """
        task_filter = "" if task_id is None else " AND task_id = ?"
        params: tuple[str, ...] = () if task_id is None else (task_id,)
        slots = self._store.fetch_one(
            "SELECT COALESCE(SUM(open_slots * payable_per_worker), 0) AS total "
            f"FROM tasks WHERE status = 'open'{task_filter}",
            params,
        )
        pending = self._store.fetch_one(
            "SELECT COALESCE(SUM(payable_amount), 0) AS total "
            f"FROM submissions WHERE status = 'pending'{task_filter}",
            params,
        )
        return int(slots["total"] if slots else 0) + int(pending["total"] if pending else 0)

    def get_stats(self) -> dict[str, Any]:
        """Task counts by status and the platform-wide escrow total."""
        rows = self._store.fetch_all(
            "SELECT status, COUNT(*) AS total FROM tasks GROUP BY status",
        )
        tasks_by_status = {status: 0 for status in TASK_STATUSES}
        for row in rows:
            tasks_by_status[str(row["status"])] = int(row["total"])
        return {
            "total_tasks": sum(tasks_by_status.values()),
            "tasks_by_status": tasks_by_status,
            "total_escrowed": self.escrow_held(),
        }

    def _require_owner(self, task: dict[str, Any], requester_id: str) -> None:
        if task["buyer_id"] != requester_id:
            raise ServiceError(
                "FORBIDDEN",
                "Only the buyer who posted the task can do this",
                403,
                {},
            )
