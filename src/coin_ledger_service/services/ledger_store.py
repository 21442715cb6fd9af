"""SQLite persistence for accounts, the transaction log, and ledger records."""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
import threading
from typing import TYPE_CHECKING, Any, cast

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.services.amounts import MAX_COINS
from coin_ledger_service.services.authorization import ROLES

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class LedgerStore:
    """
    Durable store shared by every ledger component.

    Uses SQLite for persistence. Balances only ever change through
    :meth:`adjust_balance`, a single conditional UPDATE that refuses to take
    an account below zero, and every change writes its transaction log
    entry inside the same database transaction.

    Components compose multi-record operations by nesting
    :meth:`transaction` blocks: only the outermost block issues
    ``BEGIN IMMEDIATE`` and ``COMMIT``; any exception rolls the whole
    operation back.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        self._lock = threading.RLock()
        # Nesting depth of transaction() per thread
        self._local = threading.local()
        self._logger = get_logger(__name__)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(
            db_path,
            timeout=busy_timeout_ms / 1000,
            check_same_thread=False,
            isolation_level=None,
        )
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    role TEXT NOT NULL CHECK (role IN ('worker', 'buyer', 'admin')),
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    tx_id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts(account_id),
                    type TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount <> 0),
                    balance_after INTEGER NOT NULL,
                    reference TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    buyer_id TEXT NOT NULL REFERENCES accounts(account_id),
                    title TEXT NOT NULL,
                    detail TEXT NOT NULL,
                    payable_per_worker INTEGER NOT NULL CHECK (payable_per_worker > 0),
                    slot_count INTEGER NOT NULL CHECK (slot_count > 0),
                    open_slots INTEGER NOT NULL CHECK (open_slots >= 0),
                    status TEXT NOT NULL DEFAULT 'open',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    CHECK (open_slots <= slot_count)
                );

                CREATE TABLE IF NOT EXISTS submissions (
                    submission_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    worker_id TEXT NOT NULL REFERENCES accounts(account_id),
                    details TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    payable_amount INTEGER NOT NULL CHECK (payable_amount > 0),
                    submitted_at TEXT NOT NULL,
                    resolved_at TEXT,
                    reviewer_id TEXT
                );

                CREATE TABLE IF NOT EXISTS withdrawals (
                    withdrawal_id TEXT PRIMARY KEY,
                    worker_id TEXT NOT NULL REFERENCES accounts(account_id),
                    coin_amount INTEGER NOT NULL CHECK (coin_amount > 0),
                    cash_amount REAL NOT NULL CHECK (cash_amount > 0),
                    payment_system TEXT NOT NULL,
                    account_number TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    tx_id TEXT NOT NULL,
                    requested_at TEXT NOT NULL,
                    approved_at TEXT,
                    approved_by TEXT
                );

                CREATE TABLE IF NOT EXISTS top_ups (
                    top_up_id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts(account_id),
                    cash_amount REAL NOT NULL CHECK (cash_amount > 0),
                    coin_amount INTEGER NOT NULL CHECK (coin_amount > 0),
                    external_ref TEXT NOT NULL,
                    tx_id TEXT NOT NULL,
                    balance_after INTEGER NOT NULL,
                    recorded_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_top_up_external_ref
                    ON top_ups(external_ref);

                CREATE UNIQUE INDEX IF NOT EXISTS ux_pending_submission_worker
                    ON submissions(task_id, worker_id)
                    WHERE status = 'pending';

                CREATE INDEX IF NOT EXISTS ix_transactions_account_timestamp_tx_id
                    ON transactions(account_id, timestamp, tx_id);

                CREATE INDEX IF NOT EXISTS ix_tasks_status_created
                    ON tasks(status, created_at);

                CREATE INDEX IF NOT EXISTS ix_submissions_worker
                    ON submissions(worker_id, submitted_at);

                CREATE INDEX IF NOT EXISTS ix_withdrawals_status
                    ON withdrawals(status, requested_at);
                """
            )

    # --- primitives ---

    def now(self) -> str:
        """Current UTC timestamp in ISO 8601 format."""
        return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")

    def new_id(self, prefix: str) -> str:
        """Generate a new record identifier such as ``task-<uuid>``."""
        return f"{prefix}-{uuid.uuid4()}"

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed statements as one atomic unit.

        Re-entrant within a thread. Lock timeouts and I/O failures are
        reported as STORE_UNAVAILABLE (503); the caller may retry.
        """
        with self._lock:
            depth = self._depth()
            if depth > 0:
                self._local.depth = depth + 1
                try:
                    yield
                finally:
                    self._local.depth = depth
                return

            try:
                self._db.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                raise self._unavailable(exc) from exc

            self._local.depth = 1
            try:
                yield
                self._db.commit()
            except sqlite3.OperationalError as exc:
                self._rollback()
                raise self._unavailable(exc) from exc
            except BaseException:
                self._rollback()
                raise
            finally:
                self._local.depth = 0

    def in_transaction(self) -> bool:
        """Whether the calling thread is inside :meth:`transaction`."""
        return self._depth() > 0

    def _depth(self) -> int:
        return cast("int", getattr(self._local, "depth", 0))

    def _require_transaction(self, operation: str) -> None:
        if not self.in_transaction():
            msg = f"{operation} must run inside LedgerStore.transaction()"
            raise RuntimeError(msg)

    def _rollback(self) -> None:
        if self._db.in_transaction:
            self._db.rollback()

    def _unavailable(self, exc: sqlite3.OperationalError) -> ServiceError:
        self._logger.warning("Store operation failed", extra={"error": str(exc)})
        return ServiceError(
            "STORE_UNAVAILABLE",
            "Ledger store is temporarily unavailable",
            503,
            {},
        )

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a write statement inside the current transaction; return rowcount."""
        self._require_transaction("execute")
        cursor = self._db.execute(sql, params)
        return cursor.rowcount

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Run a query and return the first row as a dict, or None."""
        with self._lock:
            try:
                row = self._db.execute(sql, params).fetchone()
            except sqlite3.OperationalError as exc:
                raise self._unavailable(exc) from exc
        if row is None:
            return None
        return dict(row)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""
        with self._lock:
            try:
                rows = self._db.execute(sql, params).fetchall()
            except sqlite3.OperationalError as exc:
                raise self._unavailable(exc) from exc
        return [dict(row) for row in rows]

    # --- accounts ---

    def create_account(
        self,
        account_id: str,
        email: str,
        role: str,
        initial_balance: int = 0,
    ) -> dict[str, Any]:
        """
        Create a new account.

        Raises:
            ServiceError: ACCOUNT_EXISTS if the account already exists.
            ServiceError: INVALID_AMOUNT if initial_balance is outside 0..MAX_COINS.
        """
        if isinstance(initial_balance, bool) or not isinstance(initial_balance, int):
            raise ServiceError("INVALID_AMOUNT", "Initial balance must be an integer", 400, {})
        if initial_balance < 0:
            raise ServiceError("INVALID_AMOUNT", "Initial balance must be non-negative", 400, {})
        if initial_balance > MAX_COINS:
            raise ServiceError(
                "INVALID_AMOUNT",
                f"Initial balance must not exceed {MAX_COINS}",
                400,
                {"maximum": MAX_COINS},
            )
        if role not in ROLES:
            raise ServiceError("INVALID_ROLE", f"Role must be one of {sorted(ROLES)}", 400, {})

        now = self.now()
        try:
            with self.transaction():
                self.execute(
                    "INSERT INTO accounts (account_id, email, role, balance, created_at) "
                    "VALUES (?, ?, ?, 0, ?)",
                    (account_id, email, role, now),
                )
                if initial_balance > 0:
                    self.adjust_balance(
                        account_id, initial_balance, "initial_balance", "initial_balance"
                    )
        except sqlite3.IntegrityError as exc:
            raise ServiceError(
                "ACCOUNT_EXISTS",
                "Account already exists",
                409,
                {},
            ) from exc

        return {
            "account_id": account_id,
            "email": email,
            "role": role,
            "balance": initial_balance,
            "created_at": now,
        }

    def get_account(self, account_id: str) -> dict[str, Any] | None:
        """Look up an account by ID. Returns None if not found."""
        return self.fetch_one(
            "SELECT account_id, email, role, balance, created_at FROM accounts "
            "WHERE account_id = ?",
            (account_id,),
        )

    def require_account(self, account_id: str) -> dict[str, Any]:
        """Look up an account by ID, raising ACCOUNT_NOT_FOUND if absent."""
        account = self.get_account(account_id)
        if account is None:
            raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {})
        return account

    def adjust_balance(
        self,
        account_id: str,
        delta: int,
        tx_type: str,
        reference: str,
    ) -> dict[str, Any]:
        """
        Atomically add ``delta`` (positive or negative) to a balance.

        The update only applies if the resulting balance stays within
        ``0..MAX_COINS``, so concurrent debits can never both pass a stale
        balance check.
        Must run inside :meth:`transaction`.

        Returns:
            {"tx_id": "...", "balance_after": N}

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND, INSUFFICIENT_BALANCE, or
                INVALID_AMOUNT if a credit would pass MAX_COINS.
        """
        self._require_transaction("adjust_balance")
        if delta == 0:
            msg = "adjust_balance requires a non-zero delta"
            raise ValueError(msg)
        if abs(delta) > MAX_COINS:
            raise ServiceError("INVALID_AMOUNT", "Amount is too large", 400, {"maximum": MAX_COINS})

        rowcount = self.execute(
            "UPDATE accounts SET balance = balance + ? "
            "WHERE account_id = ? AND balance >= ? AND balance <= ?",
            (delta, account_id, max(0, -delta), MAX_COINS - max(0, delta)),
        )
        if rowcount == 0:
            # Distinguish between not found and insufficient funds
            if self.get_account(account_id) is None:
                raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {})
            if delta > 0:
                raise ServiceError(
                    "INVALID_AMOUNT",
                    "Balance would exceed the maximum",
                    400,
                    {"maximum": MAX_COINS},
                )
            raise ServiceError(
                "INSUFFICIENT_BALANCE",
                "Insufficient coin balance",
                402,
                {"required": -delta},
            )

        row = self.fetch_one("SELECT balance FROM accounts WHERE account_id = ?", (account_id,))
        if row is None:
            msg = "Account not found after update"
            raise RuntimeError(msg)
        balance_after = cast("int", row["balance"])

        tx_id = self.new_id("tx")
        self.execute(
            "INSERT INTO transactions "
            "(tx_id, account_id, type, amount, balance_after, reference, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (tx_id, account_id, tx_type, delta, balance_after, reference, self.now()),
        )
        return {"tx_id": tx_id, "balance_after": balance_after}

    def get_transactions(self, account_id: str) -> list[dict[str, Any]]:
        """
        Get transaction history for an account.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND.
        """
        self.require_account(account_id)
        return self.fetch_all(
            "SELECT tx_id, type, amount, balance_after, reference, timestamp "
            "FROM transactions WHERE account_id = ? ORDER BY timestamp, tx_id",
            (account_id,),
        )

    def count_accounts(self) -> int:
        """Count total accounts."""
        row = self.fetch_one("SELECT COUNT(*) AS total FROM accounts")
        if row is None:
            return 0
        return int(row["total"])

    def total_balances(self) -> int:
        """Sum of every account balance."""
        row = self.fetch_one("SELECT COALESCE(SUM(balance), 0) AS total FROM accounts")
        if row is None:
            return 0
        return int(row["total"])

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
