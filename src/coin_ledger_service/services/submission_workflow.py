"""Submission state machine: pending -> approved | rejected."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any, cast

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.services.authorization import authorize_actor

if TYPE_CHECKING:
    from coin_ledger_service.services.escrow_ledger import EscrowLedger
    from coin_ledger_service.services.ledger_store import LedgerStore

_SUBMISSION_COLUMNS_SQL = (
    "submission_id, task_id, worker_id, details, status, payable_amount, "
    "submitted_at, resolved_at, reviewer_id"
)


class SubmissionWorkflow:
    """
    Work submitted against a task, and its one-time resolution.

    Submitting claims one of the task's open slots. Approval pays the
    worker the snapshotted ``payable_amount`` out of that claimed slot;
    rejection hands the slot back to the task. Each resolution is a single
    conditional status update plus its ledger effect in one transaction, so
    a retried call finds the submission already resolved and changes
    nothing.
    """

    def __init__(self, store: LedgerStore, escrow_ledger: EscrowLedger) -> None:
        self._store = store
        self._escrow_ledger = escrow_ledger
        self._logger = get_logger(__name__)

    def submit(self, task_id: str, worker_id: str, details: str) -> dict[str, Any]:
        """
        Create a pending submission and claim a slot on the task.

        Raises:
            ServiceError: INVALID_PAYLOAD, ACCOUNT_NOT_FOUND, FORBIDDEN,
                TASK_NOT_FOUND, INVALID_STATE_TRANSITION, DUPLICATE_SUBMISSION.
        """
        if not isinstance(details, str) or not details.strip():
            raise ServiceError(
                "INVALID_PAYLOAD",
                "details must be a non-empty string",
                400,
                {"field": "details"},
            )

        authorize_actor(self._store, worker_id, "submit_work")
        submission_id = self._store.new_id("sub")

        try:
            with self._store.transaction():
                task = self._escrow_ledger.require_task(task_id)
                if task["status"] != "open":
                    raise ServiceError(
                        "INVALID_STATE_TRANSITION",
                        "Task is not accepting submissions",
                        409,
                        {"status": task["status"]},
                    )
                self._store.execute(
                    f"INSERT INTO submissions ({_SUBMISSION_COLUMNS_SQL}) "
                    "VALUES (?, ?, ?, ?, 'pending', ?, ?, NULL, NULL)",
                    (
                        submission_id,
                        task_id,
                        worker_id,
                        details,
                        task["payable_per_worker"],
                        self._store.now(),
                    ),
                )
                self._escrow_ledger.release_slot(task_id, "consume")
        except sqlite3.IntegrityError as exc:
            raise ServiceError(
                "DUPLICATE_SUBMISSION",
                "You already have a pending submission for this task",
                409,
                {},
            ) from exc

        self._logger.info(
            "Work submitted",
            extra={"submission_id": submission_id, "task_id": task_id, "worker_id": worker_id},
        )
        return self.require_submission(submission_id)

    def approve(self, submission_id: str, reviewer_id: str) -> dict[str, Any]:
        """
        Approve a pending submission and credit the worker.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND, FORBIDDEN, SUBMISSION_NOT_FOUND,
                ALREADY_RESOLVED.
        """
        reviewer = authorize_actor(self._store, reviewer_id, "approve_submission")

        with self._store.transaction():
            submission = self._resolve(submission_id, reviewer, "approved")
            payout = self._store.adjust_balance(
                submission["worker_id"],
                cast("int", submission["payable_amount"]),
                "submission_payout",
                submission_id,
            )

        self._logger.info(
            "Submission approved",
            extra={
                "submission_id": submission_id,
                "task_id": submission["task_id"],
                "worker_id": submission["worker_id"],
                "amount": submission["payable_amount"],
                "reviewer_id": reviewer_id,
            },
        )
        result = self.require_submission(submission_id)
        result["worker_balance_after"] = payout["balance_after"]
        return result

    def reject(self, submission_id: str, reviewer_id: str) -> dict[str, Any]:
        """
        Reject a pending submission and hand its slot back to the task.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND, FORBIDDEN, SUBMISSION_NOT_FOUND,
                ALREADY_RESOLVED.
        """
        reviewer = authorize_actor(self._store, reviewer_id, "reject_submission")

        with self._store.transaction():
            submission = self._resolve(submission_id, reviewer, "rejected")
            task = self._escrow_ledger.release_slot(submission["task_id"], "reopen")

        self._logger.info(
            "Submission rejected",
            extra={
                "submission_id": submission_id,
                "task_id": submission["task_id"],
                "worker_id": submission["worker_id"],
                "reviewer_id": reviewer_id,
                "open_slots": task["open_slots"],
            },
        )
        return self.require_submission(submission_id)

    def _resolve(
        self,
        submission_id: str,
        reviewer: dict[str, Any],
        new_status: str,
    ) -> dict[str, Any]:
        """Move a submission out of pending. Runs inside the caller's transaction."""
        submission = self.require_submission(submission_id)
        task = self._escrow_ledger.require_task(submission["task_id"])

        if reviewer["role"] != "admin" and task["buyer_id"] != reviewer["account_id"]:
            raise ServiceError(
                "FORBIDDEN",
                "Only the task's buyer or an admin can review this submission",
                403,
                {},
            )

        rowcount = self._store.execute(
            "UPDATE submissions SET status = ?, resolved_at = ?, reviewer_id = ? "
            "WHERE submission_id = ? AND status = 'pending'",
            (new_status, self._store.now(), reviewer["account_id"], submission_id),
        )
        if rowcount != 1:
            raise ServiceError(
                "ALREADY_RESOLVED",
                "Submission has already been resolved",
                409,
                {"status": submission["status"]},
            )
        return submission

    # --- reads ---

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        """Look up a submission by ID. Returns None if not found."""
        return self._store.fetch_one(
            f"SELECT {_SUBMISSION_COLUMNS_SQL} FROM submissions WHERE submission_id = ?",
            (submission_id,),
        )

    def require_submission(self, submission_id: str) -> dict[str, Any]:
        """Look up a submission by ID, raising SUBMISSION_NOT_FOUND if absent."""
        submission = self.get_submission(submission_id)
        if submission is None:
            raise ServiceError("SUBMISSION_NOT_FOUND", "Submission not found", 404, {})
        return submission

    def list_for_worker(self, worker_id: str) -> list[dict[str, Any]]:
        """A worker's submissions, newest first."""
        return self._store.fetch_all(
            f"SELECT {_SUBMISSION_COLUMNS_SQL} FROM submissions WHERE worker_id = ? "
            "ORDER BY submitted_at DESC, submission_id",
            (worker_id,),
        )

    def list_for_task(self, task_id: str, status: str | None = None) -> list[dict[str, Any]]:
        """Submissions against a task, oldest first, optionally filtered by status."""
        if status is None:
            return self._store.fetch_all(
                f"SELECT {_SUBMISSION_COLUMNS_SQL} FROM submissions WHERE task_id = ? "
                "ORDER BY submitted_at, submission_id",
                (task_id,),
            )
        return self._store.fetch_all(
            f"SELECT {_SUBMISSION_COLUMNS_SQL} FROM submissions "
            "WHERE task_id = ? AND status = ? ORDER BY submitted_at, submission_id",
            (task_id, status),
        )
