"""
store.py - In-Memory Storage and Per-Loan Locking

InMemoryLoanStore implements the LoanStore protocol with the same atomicity
contract a database transaction gives: writes made inside with_transaction()
are staged and applied together when the callback returns; if the callback
raises, nothing is applied.

LoanLocks serializes work on a single loan id. Different loan ids never
contend with each other.
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Tuple, TypeVar
import logging
import threading

from .core import (
    Borrower, Loan, LoanEvent, Payment,
    StaleLoanVersion, StorageFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class LoanLocks:
    """
    Registry of exclusive locks keyed by loan id.

    An entry lives only while some thread holds or waits for it, so the
    registry stays empty between operations whatever ids callers pass in.

    Example:
        locks = LoanLocks()
        with locks.hold("loan-1"):
            ...  # no other thread holds loan-1 here
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        """Number of loan ids currently held or waited on."""
        with self._guard:
            return len(self._entries)

    def acquire(self, loan_id: str, timeout: Optional[float] = None) -> bool:
        """
        Block until the lock for loan_id is held by this thread.

        Returns False if timeout (seconds) elapses first; the caller then
        holds nothing and must not call release().
        """
        with self._guard:
            entry = self._entries.get(loan_id)
            if entry is None:
                entry = self._entries[loan_id] = _LockEntry()
            entry.users += 1
        acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            with self._guard:
                self._drop_user(loan_id, entry)
        return acquired

    def release(self, loan_id: str) -> None:
        with self._guard:
            entry = self._entries[loan_id]
            entry.lock.release()
            self._drop_user(loan_id, entry)

    def _drop_user(self, loan_id: str, entry: _LockEntry) -> None:
        entry.users -= 1
        if entry.users == 0:
            del self._entries[loan_id]

    @contextmanager
    def hold(self, loan_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for loan_id for the duration of the block.

        Raises:
            TimeoutError: if timeout (seconds) elapses before the lock is free.
        """
        if not self.acquire(loan_id, timeout):
            raise TimeoutError(f"Timed out waiting for lock on loan {loan_id}")
        try:
            yield
        finally:
            self.release(loan_id)


class _StagedWrites:
    """
    StoreTransaction for InMemoryLoanStore.

    Collects writes without touching the store; InMemoryLoanStore applies them
    only after the callback returns.
    """

    def __init__(self, store: InMemoryLoanStore):
        self._store = store
        self.loans: Dict[str, Loan] = {}
        self.events: List[LoanEvent] = []
        self.payments: List[Payment] = []
        self.removals: Dict[str, Payment] = {}
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise StorageFailure("Transaction is no longer open")

    def _current_loan(self, loan_id: str) -> Optional[Loan]:
        if loan_id in self.loans:
            return self.loans[loan_id]
        return self._store._loans.get(loan_id)

    def save_loan(self, loan: Loan, expected_version: Optional[int] = None) -> None:
        self._check_open()
        if expected_version is not None:
            current = self._current_loan(loan.loan_id)
            found = current.version if current is not None else -1
            if found != expected_version:
                raise StaleLoanVersion(loan.loan_id, expected_version, found)
        self.loans[loan.loan_id] = loan

    def append_event(self, event: LoanEvent) -> None:
        self._check_open()
        if self._current_loan(event.loan_id) is None:
            raise StorageFailure(f"Cannot append event for unknown loan {event.loan_id}")
        self.events.append(event)

    def add_payment(self, payment: Payment) -> None:
        self._check_open()
        if self._current_loan(payment.loan_id) is None:
            raise StorageFailure(f"Cannot add payment for unknown loan {payment.loan_id}")
        self.payments.append(payment)

    def remove_payment(self, payment_id: str, deleted_at: datetime) -> None:
        self._check_open()
        current = next((p for p in self.payments if p.payment_id == payment_id), None)
        if current is None:
            current = self._store.get_payment(payment_id)
        if current is None or current.deleted_at is not None or payment_id in self.removals:
            raise StorageFailure(f"Cannot remove unknown or already removed payment {payment_id}")
        self.removals[payment_id] = replace(current, deleted_at=deleted_at)


class InMemoryLoanStore:
    """
    Process-local LoanStore.

    Thread Safety:
        Reads and commits are serialized by one internal lock. Transactions
        do not block each other while staging; conflicting loan writes are
        caught by the expected-version check at commit.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._loans: Dict[str, Loan] = {}
        self._borrowers: Dict[str, Borrower] = {}
        self._payments: Dict[str, List[Payment]] = defaultdict(list)
        self._events: Dict[str, List[LoanEvent]] = defaultdict(list)

    # ========================================================================
    # READS
    # ========================================================================

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        with self._lock:
            return self._loans.get(loan_id)

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        with self._lock:
            return self._borrowers.get(borrower_id)

    def sum_payments(self, loan_id: str) -> int:
        with self._lock:
            return sum(
                p.amount_micros for p in self._payments.get(loan_id, ())
                if p.deleted_at is None
            )

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        with self._lock:
            for payments in self._payments.values():
                for payment in payments:
                    if payment.payment_id == payment_id:
                        return payment
            return None

    def list_payments(self, loan_id: str) -> List[Payment]:
        with self._lock:
            return [p for p in self._payments.get(loan_id, ()) if p.deleted_at is None]

    def list_events(self, loan_id: str) -> List[LoanEvent]:
        with self._lock:
            return list(self._events.get(loan_id, ()))

    # ========================================================================
    # WRITES
    # ========================================================================

    def add_borrower(self, borrower: Borrower) -> Borrower:
        """Register a borrower (seeding; borrower management lives elsewhere)."""
        with self._lock:
            if borrower.borrower_id in self._borrowers:
                raise ValueError(f"Borrower already registered: {borrower.borrower_id}")
            self._borrowers[borrower.borrower_id] = borrower
            return borrower

    def with_transaction(self, fn: Callable[[_StagedWrites], T]) -> T:
        """
        Run fn with a write handle and apply its writes atomically.

        If fn raises, or a staged loan write is stale at commit time, the
        store is left exactly as it was.
        """
        staged = _StagedWrites(self)
        try:
            result = fn(staged)
        finally:
            staged.closed = True

        with self._lock:
            for loan_id, loan in staged.loans.items():
                current = self._loans.get(loan_id)
                expected = loan.version - 1
                if current is not None and current.version != expected:
                    raise StaleLoanVersion(loan_id, expected, current.version)
            for payment_id in staged.removals:
                current_payment = self.get_payment(payment_id)
                if current_payment is not None and current_payment.deleted_at is not None:
                    raise StorageFailure(f"Payment {payment_id} was already removed")
            self._apply(staged)
        return result

    def _apply(self, staged: _StagedWrites) -> None:
        self._loans.update(staged.loans)
        for payment in staged.payments:
            self._payments[payment.loan_id].append(payment)
        for removed in staged.removals.values():
            self._payments[removed.loan_id] = [
                removed if p.payment_id == removed.payment_id else p
                for p in self._payments[removed.loan_id]
            ]
        for event in staged.events:
            self._events[event.loan_id].append(event)
        logger.debug(
            "Committed %d loan(s), %d event(s), %d payment(s), %d removal(s)",
            len(staged.loans), len(staged.events), len(staged.payments), len(staged.removals),
        )

    # ========================================================================
    # INSPECTION
    # ========================================================================

    def counts(self) -> Tuple[int, int, int]:
        """(loans, events, payments) currently stored."""
        with self._lock:
            return (
                len(self._loans),
                sum(len(v) for v in self._events.values()),
                sum(len(v) for v in self._payments.values()),
            )
