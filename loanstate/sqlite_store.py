"""
sqlite_store.py - SQLite-backed LoanStore

Persists loans, borrowers, payments and audit events in a single SQLite
database. with_transaction() runs inside BEGIN IMMEDIATE ... COMMIT, so the
loan update and its audit event are committed together or rolled back
together.

Datetimes are stored as ISO-8601 text; event metadata and changes as JSON.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar
import json
import logging
import sqlite3
import threading

from .core import (
    Borrower, EventType, Loan, LoanEvent, LoanStatus, Payment,
    StaleLoanVersion, StorageFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS borrowers (
        borrower_id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        credit_score INTEGER CHECK (credit_score IS NULL OR credit_score BETWEEN 300 AND 850),
        annual_income_micros INTEGER CHECK (annual_income_micros IS NULL OR annual_income_micros >= 0),
        monthly_debt_micros INTEGER CHECK (monthly_debt_micros IS NULL OR monthly_debt_micros >= 0)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS loans (
        loan_id TEXT PRIMARY KEY,
        borrower_id TEXT,
        principal_amount_micros INTEGER NOT NULL,
        interest_rate_bps INTEGER NOT NULL,
        term_months INTEGER NOT NULL,
        status TEXT NOT NULL CHECK (status IN ({statuses})),
        status_changed_at TEXT,
        created_at TEXT,
        submitted_at TEXT,
        approved_at TEXT,
        disbursed_at TEXT,
        version INTEGER NOT NULL DEFAULT 0
    );
    """.format(statuses=", ".join(f"'{s.value}'" for s in LoanStatus)),
    """
    CREATE TABLE IF NOT EXISTS payments (
        payment_id TEXT PRIMARY KEY,
        loan_id TEXT NOT NULL REFERENCES loans(loan_id),
        amount_micros INTEGER NOT NULL CHECK (amount_micros > 0),
        paid_at TEXT NOT NULL,
        deleted_at TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS loan_events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL UNIQUE,
        loan_id TEXT NOT NULL REFERENCES loans(loan_id),
        event_type TEXT NOT NULL,
        actor_id TEXT NOT NULL,
        occurred_at TEXT NOT NULL,
        description TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT,
        reason TEXT,
        metadata TEXT,
        changes TEXT,
        payment_id TEXT,
        payment_amount_micros INTEGER
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_payments_loan ON payments(loan_id);",
    "CREATE INDEX IF NOT EXISTS idx_events_loan ON loan_events(loan_id, seq);",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _status(value: Optional[str]) -> Optional[LoanStatus]:
    return LoanStatus(value) if value else None


def _row_to_loan(row: sqlite3.Row) -> Loan:
    return Loan(
        loan_id=row["loan_id"],
        borrower_id=row["borrower_id"],
        principal_amount_micros=row["principal_amount_micros"],
        interest_rate_bps=row["interest_rate_bps"],
        term_months=row["term_months"],
        status=LoanStatus(row["status"]),
        status_changed_at=_dt(row["status_changed_at"]),
        created_at=_dt(row["created_at"]),
        submitted_at=_dt(row["submitted_at"]),
        approved_at=_dt(row["approved_at"]),
        disbursed_at=_dt(row["disbursed_at"]),
        version=row["version"],
    )


def _row_to_payment(row: sqlite3.Row) -> Payment:
    return Payment(
        payment_id=row["payment_id"],
        loan_id=row["loan_id"],
        amount_micros=row["amount_micros"],
        paid_at=_dt(row["paid_at"]),
        deleted_at=_dt(row["deleted_at"]),
    )


def _row_to_event(row: sqlite3.Row) -> LoanEvent:
    changes = json.loads(row["changes"]) if row["changes"] else None
    if changes is not None:
        changes = {k: tuple(v) for k, v in changes.items()}
    return LoanEvent(
        event_id=row["event_id"],
        loan_id=row["loan_id"],
        event_type=EventType(row["event_type"]),
        actor_id=row["actor_id"],
        occurred_at=_dt(row["occurred_at"]),
        description=row["description"],
        from_status=_status(row["from_status"]),
        to_status=_status(row["to_status"]),
        reason=row["reason"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        changes=changes,
        payment_id=row["payment_id"],
        payment_amount_micros=row["payment_amount_micros"],
    )


class _SQLiteTransaction:
    """StoreTransaction bound to an open SQLite transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def save_loan(self, loan: Loan, expected_version: Optional[int] = None) -> None:
        values: Dict[str, Any] = {
            "loan_id": loan.loan_id,
            "borrower_id": loan.borrower_id,
            "principal_amount_micros": loan.principal_amount_micros,
            "interest_rate_bps": loan.interest_rate_bps,
            "term_months": loan.term_months,
            "status": loan.status.value,
            "status_changed_at": _iso(loan.status_changed_at),
            "created_at": _iso(loan.created_at),
            "submitted_at": _iso(loan.submitted_at),
            "approved_at": _iso(loan.approved_at),
            "disbursed_at": _iso(loan.disbursed_at),
            "version": loan.version,
        }
        if expected_version is None:
            columns = ", ".join(values)
            placeholders = ", ".join(f":{k}" for k in values)
            self._conn.execute(f"INSERT INTO loans ({columns}) VALUES ({placeholders})", values)
            return

        assignments = ", ".join(f"{k} = :{k}" for k in values if k != "loan_id")
        cursor = self._conn.execute(
            f"UPDATE loans SET {assignments} WHERE loan_id = :loan_id AND version = :expected",
            {**values, "expected": expected_version},
        )
        if cursor.rowcount == 0:
            row = self._conn.execute(
                "SELECT version FROM loans WHERE loan_id = ?", (loan.loan_id,)
            ).fetchone()
            raise StaleLoanVersion(loan.loan_id, expected_version, row["version"] if row else -1)

    def append_event(self, event: LoanEvent) -> None:
        changes = None
        if event.changes is not None:
            changes = json.dumps({k: list(v) for k, v in event.changes.items()})
        self._conn.execute(
            """
            INSERT INTO loan_events (
                event_id, loan_id, event_type, actor_id, occurred_at, description,
                from_status, to_status, reason, metadata, changes,
                payment_id, payment_amount_micros
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.loan_id,
                event.event_type.value,
                event.actor_id,
                _iso(event.occurred_at),
                event.description,
                event.from_status.value if event.from_status else None,
                event.to_status.value if event.to_status else None,
                event.reason,
                json.dumps(dict(event.metadata)) if event.metadata is not None else None,
                changes,
                event.payment_id,
                event.payment_amount_micros,
            ),
        )

    def add_payment(self, payment: Payment) -> None:
        self._conn.execute(
            "INSERT INTO payments (payment_id, loan_id, amount_micros, paid_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                payment.payment_id,
                payment.loan_id,
                payment.amount_micros,
                _iso(payment.paid_at),
                _iso(payment.deleted_at),
            ),
        )

    def remove_payment(self, payment_id: str, deleted_at: datetime) -> None:
        cursor = self._conn.execute(
            "UPDATE payments SET deleted_at = ? WHERE payment_id = ? AND deleted_at IS NULL",
            (_iso(deleted_at), payment_id),
        )
        if cursor.rowcount == 0:
            raise StorageFailure(f"Cannot remove unknown or already removed payment {payment_id}")


class SQLiteLoanStore:
    """
    LoanStore backed by one SQLite connection.

    The connection is shared between threads and guarded by a lock; each
    with_transaction() call holds that lock from BEGIN to COMMIT/ROLLBACK.

    Example:
        store = SQLiteLoanStore(":memory:")
        engine = TransitionEngine(store)
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON;")
            for statement in SCHEMA:
                self._conn.execute(statement)
        except sqlite3.Error as e:
            logger.error("Error opening loan database %s: %s", path, e)
            raise StorageFailure(f"Cannot open loan database {path}: {e}") from e
        logger.debug("Loan database ready at %s", path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
            logger.debug("Loan database %s closed.", self.path)

    def __enter__(self) -> SQLiteLoanStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _fetch_one(self, query: str, params=()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchone()
            except sqlite3.Error as e:
                logger.error("Fetch one failed: %s with params %s - %s", query, params, e)
                raise StorageFailure(str(e)) from e

    def _fetch_all(self, query: str, params=()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                logger.error("Fetch all failed: %s with params %s - %s", query, params, e)
                raise StorageFailure(str(e)) from e

    # ========================================================================
    # READS
    # ========================================================================

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        row = self._fetch_one("SELECT * FROM loans WHERE loan_id = ?", (loan_id,))
        return _row_to_loan(row) if row else None

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        row = self._fetch_one("SELECT * FROM borrowers WHERE borrower_id = ?", (borrower_id,))
        if row is None:
            return None
        return Borrower(
            borrower_id=row["borrower_id"],
            name=row["name"],
            credit_score=row["credit_score"],
            annual_income_micros=row["annual_income_micros"],
            monthly_debt_micros=row["monthly_debt_micros"],
        )

    def sum_payments(self, loan_id: str) -> int:
        row = self._fetch_one(
            "SELECT COALESCE(SUM(amount_micros), 0) AS total FROM payments "
            "WHERE loan_id = ? AND deleted_at IS NULL",
            (loan_id,),
        )
        return int(row["total"])

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        row = self._fetch_one("SELECT * FROM payments WHERE payment_id = ?", (payment_id,))
        return _row_to_payment(row) if row else None

    def list_payments(self, loan_id: str) -> List[Payment]:
        rows = self._fetch_all(
            "SELECT * FROM payments WHERE loan_id = ? AND deleted_at IS NULL ORDER BY paid_at, rowid",
            (loan_id,),
        )
        return [_row_to_payment(r) for r in rows]

    def list_events(self, loan_id: str) -> List[LoanEvent]:
        rows = self._fetch_all(
            "SELECT * FROM loan_events WHERE loan_id = ? ORDER BY seq", (loan_id,)
        )
        return [_row_to_event(r) for r in rows]

    # ========================================================================
    # WRITES
    # ========================================================================

    def add_borrower(self, borrower: Borrower) -> Borrower:
        """Register a borrower (seeding; borrower management lives elsewhere)."""
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO borrowers (borrower_id, name, credit_score, "
                    "annual_income_micros, monthly_debt_micros) VALUES (?, ?, ?, ?, ?)",
                    (
                        borrower.borrower_id,
                        borrower.name,
                        borrower.credit_score,
                        borrower.annual_income_micros,
                        borrower.monthly_debt_micros,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Borrower already registered: {borrower.borrower_id}") from e
        return borrower

    def with_transaction(self, fn: Callable[[_SQLiteTransaction], T]) -> T:
        """
        Run fn inside BEGIN IMMEDIATE; commit on return, roll back on any error.

        sqlite3 errors are re-raised as StorageFailure; errors raised by fn
        itself propagate unchanged after the rollback.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                logger.error("Could not begin transaction on %s: %s", self.path, e)
                raise StorageFailure(f"Could not begin transaction: {e}") from e
            try:
                result = fn(_SQLiteTransaction(self._conn))
                self._conn.execute("COMMIT")
                return result
            except sqlite3.Error as e:
                self._rollback()
                logger.error("Transaction failed on %s: %s", self.path, e, exc_info=True)
                raise StorageFailure(f"Transaction failed: {e}") from e
            except BaseException:
                self._rollback()
                raise

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error("Rollback failed on %s: %s", self.path, e)
