"""
engine.py - Loan Transition Engine

The public entry point for changing a loan's status. Every transition goes
through the same sequence:

1. Load the loan (LoanNotFound)
2. Check the transition graph (InvalidTransition)
3. Load the borrower (BorrowerNotFound)
4. Derive the remaining balance from recorded payments
5. Run the guard for the (from, to) pair (GuardRejected)
6. In one store transaction: write the loan and append its STATUS_CHANGE event
7. Return the updated loan

Steps 1-6 run while holding an exclusive lock on the loan id, and the loan
write carries the version it was read at, so two concurrent transitions on
the same loan can never both apply. Loans with different ids do not contend.

available_transitions() answers "what can happen next" with the same guard
evaluator, so the preview and the real transition never disagree.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union
import logging
import uuid

from .core import (
    # Types
    AvailableTransitions, Borrower, Loan, LoanEvent, LoanStatus, LoanStore,
    Payment, StoreTransaction, TransitionContext, TransitionOption,
    # Constants
    DEFAULT_ACTOR, PAYMENT_ALLOWED_STATUSES,
    # Exceptions
    BorrowerNotFound, GuardRejected, InvalidTransition, LoanNotFound,
    LoanStateError, PaymentNotFound, PaymentRejected, StorageFailure,
)
from .events import (
    loan_created_event, loan_edited_event, payment_received_event, payment_removed_event,
    status_change_event,
)
from .guards import GuardEvaluator, UnderwritingPolicy
from .money import format_amount
from .store import LoanLocks
from .transitions import is_valid_transition, next_statuses

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

EDITABLE_FIELDS = ("borrower_id", "principal_amount_micros", "interest_rate_bps", "term_months")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class TransitionEngine:
    """
    Orchestrates status transitions and the audit records they produce.

    Example:
        store = InMemoryLoanStore()
        store.add_borrower(Borrower("b-1", credit_score=720))
        engine = TransitionEngine(store)

        loan = engine.create_loan("b-1", 500_000_000, 550, 60, actor_id="officer-7")
        loan = engine.transition(loan.loan_id, LoanStatus.SUBMITTED, actor_id="officer-7")
    """

    def __init__(
        self,
        store: LoanStore,
        policy: Optional[UnderwritingPolicy] = None,
        clock: Optional[Clock] = None,
        locks: Optional[LoanLocks] = None,
        lock_timeout: Optional[float] = None,
        evaluator: Optional[GuardEvaluator] = None,
    ):
        """
        Create an engine.

        Args:
            store: Storage collaborator implementing LoanStore
            policy: Underwriting thresholds (default: module constants)
            clock: Returns "now" for status and event timestamps (default: UTC wall clock)
            locks: Per-loan lock registry; share one between engines on the same store
            lock_timeout: Seconds to wait for a loan lock before failing (default: wait forever)
            evaluator: Guard evaluator (default: GuardEvaluator(policy))
        """
        self.store = store
        self.evaluator = evaluator or GuardEvaluator(policy)
        self.clock: Clock = clock or utc_now
        self.locks = locks if locks is not None else LoanLocks()
        self.lock_timeout = lock_timeout

    @property
    def policy(self) -> UnderwritingPolicy:
        return self.evaluator.policy

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def transition(
        self,
        loan_id: str,
        to_status: Union[LoanStatus, str],
        actor_id: str = DEFAULT_ACTOR,
        reason: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Loan:
        """
        Move a loan to to_status.

        Args:
            loan_id: Loan to transition
            to_status: Target status (LoanStatus or its string value)
            actor_id: Who requested the change, recorded on the audit event
            reason: Optional explanation, recorded on the audit event
            metadata: Optional structured context, recorded on the audit event

        Returns:
            The updated Loan.

        Raises:
            LoanNotFound, BorrowerNotFound: a referenced record does not exist
            InvalidTransition: the graph has no such edge
            GuardRejected: a business rule failed; str(exc) is the reason
            StorageFailure: the atomic write failed and nothing was committed
        """
        to_status = LoanStatus(to_status)

        with self._loan_lock(loan_id):
            loan = self._load_loan(loan_id)
            from_status = loan.status

            if not is_valid_transition(from_status, to_status):
                error = InvalidTransition(from_status, to_status, next_statuses(from_status))
                logger.warning("Loan %s: %s", loan_id, error)
                raise error

            context = self._build_context(loan)
            result = self.evaluator.evaluate(from_status, to_status, context)
            if not result.allowed:
                reason_text = result.reason or "Transition not allowed"
                logger.warning(
                    "Loan %s: %s -> %s rejected: %s",
                    loan_id, from_status.value, to_status.value, reason_text,
                )
                raise GuardRejected(from_status, to_status, reason_text)

            now = self.clock()
            updated = loan.with_status(to_status, now)
            event = status_change_event(
                loan_id, from_status, to_status, now,
                actor_id=actor_id, reason=reason, metadata=metadata,
            )

            def write(tx: StoreTransaction) -> Loan:
                tx.save_loan(updated, expected_version=loan.version)
                tx.append_event(event)
                return updated

            self._commit(loan_id, write)

        logger.info(
            "Loan %s: %s -> %s by %s",
            loan_id, from_status.value, to_status.value, event.actor_id,
        )
        return updated

    def available_transitions(self, loan_id: str) -> AvailableTransitions:
        """
        Evaluate every graph-reachable next status without changing anything.

        Raises:
            LoanNotFound, BorrowerNotFound
        """
        loan = self._load_loan(loan_id)
        context = self._build_context(loan)
        options = []
        for to_status in next_statuses(loan.status):
            result = self.evaluator.evaluate(loan.status, to_status, context)
            options.append(TransitionOption(
                to_status=to_status,
                allowed=result.allowed,
                reason=None if result.allowed else result.reason,
            ))
        return AvailableTransitions(current_status=loan.status, transitions=tuple(options))

    # ========================================================================
    # LOAN ACTIVITY
    # ========================================================================

    def create_loan(
        self,
        borrower_id: str,
        principal_amount_micros: int,
        interest_rate_bps: int,
        term_months: int,
        actor_id: str = DEFAULT_ACTOR,
        status: LoanStatus = LoanStatus.DRAFT,
        loan_id: Optional[str] = None,
    ) -> Loan:
        """
        Create a loan and its LOAN_CREATED event atomically.

        Terms are not underwritten here: an incomplete draft is allowed and
        the submission guard rejects it later.

        Raises:
            BorrowerNotFound: borrower_id does not exist
            ValueError: loan_id is already taken, or terms are not integers
        """
        if self.store.get_borrower(borrower_id) is None:
            raise BorrowerNotFound(borrower_id)

        loan_id = loan_id or _new_id("loan")
        if self.store.get_loan(loan_id) is not None:
            raise ValueError(f"Loan already exists: {loan_id}")

        now = self.clock()
        status = LoanStatus(status)
        loan = Loan(
            loan_id=loan_id,
            borrower_id=borrower_id,
            principal_amount_micros=principal_amount_micros,
            interest_rate_bps=interest_rate_bps,
            term_months=term_months,
            status=status,
            status_changed_at=now,
            created_at=now,
        )
        event = loan_created_event(loan_id, status, now, actor_id=actor_id)

        def write(tx: StoreTransaction) -> Loan:
            tx.save_loan(loan)
            tx.append_event(event)
            return loan

        with self._loan_lock(loan_id):
            self._commit(loan_id, write)

        logger.info(
            "Loan %s created for borrower %s: %s at %d bps over %d months",
            loan_id, borrower_id, format_amount(principal_amount_micros),
            interest_rate_bps, term_months,
        )
        return loan

    def update_terms(
        self,
        loan_id: str,
        actor_id: str = DEFAULT_ACTOR,
        **fields: Any,
    ) -> Loan:
        """
        Change loan terms and record a LOAN_EDITED event listing what changed.

        Accepted fields: borrower_id, principal_amount_micros,
        interest_rate_bps, term_months. Fields equal to the current value are
        ignored; if nothing changes, no write and no event happen.

        Raises:
            LoanNotFound, BorrowerNotFound
            ValueError: an unknown field name was given
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        with self._loan_lock(loan_id):
            loan = self._load_loan(loan_id)
            changes: Dict[str, Tuple[Any, Any]] = {}
            for name in EDITABLE_FIELDS:
                if name in fields and fields[name] != getattr(loan, name):
                    changes[name] = (getattr(loan, name), fields[name])
            if not changes:
                return loan

            if "borrower_id" in changes and self.store.get_borrower(fields["borrower_id"]) is None:
                raise BorrowerNotFound(fields["borrower_id"])

            updated = replace(
                loan,
                version=loan.version + 1,
                **{name: new for name, (_, new) in changes.items()},
            )
            event = loan_edited_event(loan_id, changes, self.clock(), actor_id=actor_id)

            def write(tx: StoreTransaction) -> Loan:
                tx.save_loan(updated, expected_version=loan.version)
                tx.append_event(event)
                return updated

            self._commit(loan_id, write)

        logger.info("Loan %s edited by %s: %s", loan_id, actor_id, ", ".join(changes))
        return updated

    def record_payment(
        self,
        loan_id: str,
        amount_micros: int,
        paid_at: Optional[datetime] = None,
        actor_id: str = DEFAULT_ACTOR,
    ) -> Payment:
        """
        Record a payment and its PAYMENT_RECEIVED event atomically.

        Runs under the loan's lock so the balance check and the write see the
        same payment history as any concurrent transition. The write also
        bumps the loan version, so an engine that does not share this lock
        registry fails with StaleLoanVersion instead of overpaying.

        Raises:
            LoanNotFound
            PaymentRejected: the loan is not in a payable status, the amount is
                not positive, or it exceeds the remaining balance
        """
        if isinstance(amount_micros, bool) or not isinstance(amount_micros, int):
            raise PaymentRejected(f"Payment amount must be an integer number of micros, got {amount_micros!r}")
        if amount_micros <= 0:
            raise PaymentRejected("Payment amount must be greater than 0")

        with self._loan_lock(loan_id):
            loan = self._load_loan(loan_id)
            if loan.status not in PAYMENT_ALLOWED_STATUSES:
                raise PaymentRejected(
                    f"Cannot record payment for loan in {loan.status.value} status. "
                    f"Payments are only allowed for loans that are Active, Delinquent, "
                    f"Default, or Charged Off."
                )

            remaining = loan.principal_amount_micros - self.store.sum_payments(loan_id)
            if amount_micros > remaining:
                raise PaymentRejected(
                    f"Payment amount exceeds remaining balance. "
                    f"Maximum payment allowed: {remaining} micros."
                )

            now = self.clock()
            payment = Payment(
                payment_id=_new_id("pmt"),
                loan_id=loan_id,
                amount_micros=amount_micros,
                paid_at=paid_at or now,
            )
            event = payment_received_event(
                loan_id, payment.payment_id, amount_micros, now, actor_id=actor_id,
            )

            def write(tx: StoreTransaction) -> Payment:
                tx.save_loan(replace(loan, version=loan.version + 1), expected_version=loan.version)
                tx.add_payment(payment)
                tx.append_event(event)
                return payment

            self._commit(loan_id, write)

        logger.info(
            "Loan %s: payment %s of %s received",
            loan_id, payment.payment_id, format_amount(amount_micros),
        )
        return payment

    def remove_payment(
        self,
        loan_id: str,
        payment_id: str,
        actor_id: str = DEFAULT_ACTOR,
        reason: Optional[str] = None,
    ) -> Payment:
        """
        Soft-delete a payment and record a PAYMENT_REMOVED event atomically.

        The payment keeps its row with deleted_at set and stops counting
        toward the remaining balance. No status restriction applies, so a
        correction can reopen a balance on any loan.

        Raises:
            LoanNotFound
            PaymentNotFound: the loan has no live payment with that id
        """
        with self._loan_lock(loan_id):
            loan = self._load_loan(loan_id)
            payment = self.store.get_payment(payment_id)
            if payment is None or payment.loan_id != loan_id or payment.deleted_at is not None:
                raise PaymentNotFound(loan_id, payment_id)

            now = self.clock()
            removed = replace(payment, deleted_at=now)
            event = payment_removed_event(
                loan_id, payment_id, payment.amount_micros, now,
                actor_id=actor_id, reason=reason,
            )

            def write(tx: StoreTransaction) -> Payment:
                tx.save_loan(replace(loan, version=loan.version + 1), expected_version=loan.version)
                tx.remove_payment(payment_id, now)
                tx.append_event(event)
                return removed

            self._commit(loan_id, write)

        logger.info(
            "Loan %s: payment %s of %s removed by %s",
            loan_id, payment_id, format_amount(payment.amount_micros), event.actor_id,
        )
        return removed

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_loan(self, loan_id: str) -> Loan:
        return self._load_loan(loan_id)

    def remaining_balance(self, loan_id: str) -> int:
        """Principal minus the sum of non-deleted payments, in micros."""
        loan = self._load_loan(loan_id)
        return loan.principal_amount_micros - self.store.sum_payments(loan_id)

    def history(self, loan_id: str) -> List[LoanEvent]:
        """All audit events for the loan, oldest first."""
        self._load_loan(loan_id)
        return self.store.list_events(loan_id)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @contextmanager
    def _loan_lock(self, loan_id: str) -> Iterator[None]:
        if not self.locks.acquire(loan_id, timeout=self.lock_timeout):
            message = f"Timed out waiting for lock on loan {loan_id}"
            logger.error("Loan %s: %s", loan_id, message)
            raise StorageFailure(message)
        try:
            yield
        finally:
            self.locks.release(loan_id)

    def _load_loan(self, loan_id: str) -> Loan:
        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        return loan

    def _load_borrower(self, loan: Loan) -> Borrower:
        borrower = self.store.get_borrower(loan.borrower_id) if loan.borrower_id else None
        if borrower is None:
            raise BorrowerNotFound(loan.borrower_id)
        return borrower

    def _build_context(self, loan: Loan) -> TransitionContext:
        borrower = self._load_borrower(loan)
        remaining = loan.principal_amount_micros - self.store.sum_payments(loan.loan_id)
        return TransitionContext(loan=loan, borrower=borrower, remaining_balance_micros=remaining)

    def _commit(self, loan_id: str, write: Callable[[StoreTransaction], Any]) -> Any:
        """Run write in one store transaction; any failure surfaces as StorageFailure."""
        try:
            return self.store.with_transaction(write)
        except StorageFailure as exc:
            logger.error("Loan %s: write failed: %s", loan_id, exc, exc_info=True)
            raise
        except LoanStateError:
            raise
        except Exception as exc:
            logger.error("Loan %s: write failed: %s", loan_id, exc, exc_info=True)
            raise StorageFailure(f"Write for loan {loan_id} failed: {exc}") from exc
