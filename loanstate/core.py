"""
Core types and constants for the loan lifecycle engine.

This module provides the foundational data structures and protocols:
1. Constants: underwriting thresholds, money and rate scales
2. Enums: LoanStatus, EventType
3. Immutable data structures: Loan, Borrower, Payment, LoanEvent, GuardResult
4. Exceptions: LoanStateError and the transition error taxonomy
5. Protocols: LoanStore and StoreTransaction (the storage collaborator)

Nothing in this module performs I/O or mutates shared state.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import (
    Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Protocol,
    Tuple, TypeVar, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Underwriting thresholds. UnderwritingPolicy defaults to these values.
MIN_CREDIT_SCORE_FOR_APPROVAL = 620
MAX_DTI_RATIO = Decimal("0.43")

# Credit score bounds (FICO range).
MIN_CREDIT_SCORE = 300
MAX_CREDIT_SCORE = 850

# Money is stored as integer micro-units: 10,000 per dollar.
AMOUNT_SCALE = 4
MICROS_PER_DOLLAR = 10 ** AMOUNT_SCALE

# Rates are stored as integer basis points: 10,000 bps = 100%.
BPS_PER_UNIT = 10_000
MONTHS_PER_YEAR = 12

DEFAULT_ACTOR = "system"


# ============================================================================
# ENUMS
# ============================================================================

class LoanStatus(Enum):
    """
    Lifecycle status of a loan.

    Origination (pre-disbursement):
        DRAFT, SUBMITTED, UNDER_REVIEW, INFO_REQUESTED, APPROVED,
        DENIED, WITHDRAWN, EXPIRED
    Servicing (post-disbursement):
        ACTIVE, DELINQUENT, DEFAULT, CHARGED_OFF, PAID_OFF, REFINANCED
    """
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    INFO_REQUESTED = "INFO_REQUESTED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    WITHDRAWN = "WITHDRAWN"
    EXPIRED = "EXPIRED"
    ACTIVE = "ACTIVE"
    DELINQUENT = "DELINQUENT"
    DEFAULT = "DEFAULT"
    CHARGED_OFF = "CHARGED_OFF"
    PAID_OFF = "PAID_OFF"
    REFINANCED = "REFINANCED"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. "Under Review"."""
        return STATUS_LABELS[self]

    def __str__(self) -> str:
        return self.value


STATUS_LABELS: Dict[LoanStatus, str] = {
    status: status.value.replace("_", " ").title() for status in LoanStatus
}

ORIGINATION_STATUSES: FrozenSet[LoanStatus] = frozenset({
    LoanStatus.DRAFT,
    LoanStatus.SUBMITTED,
    LoanStatus.UNDER_REVIEW,
    LoanStatus.INFO_REQUESTED,
    LoanStatus.APPROVED,
    LoanStatus.DENIED,
    LoanStatus.WITHDRAWN,
    LoanStatus.EXPIRED,
})

SERVICING_STATUSES: FrozenSet[LoanStatus] = frozenset(LoanStatus) - ORIGINATION_STATUSES

# Statuses waiting on someone (reviewer, borrower, collections).
REQUIRES_ACTION_STATUSES: FrozenSet[LoanStatus] = frozenset({
    LoanStatus.SUBMITTED,
    LoanStatus.INFO_REQUESTED,
    LoanStatus.DELINQUENT,
    LoanStatus.DEFAULT,
})

# Statuses where payments can be recorded against the loan.
PAYMENT_ALLOWED_STATUSES: FrozenSet[LoanStatus] = frozenset({
    LoanStatus.ACTIVE,
    LoanStatus.DELINQUENT,
    LoanStatus.DEFAULT,
    LoanStatus.CHARGED_OFF,
})


class EventType(Enum):
    """Kind of activity recorded in the audit ledger."""
    LOAN_CREATED = "LOAN_CREATED"
    STATUS_CHANGE = "STATUS_CHANGE"
    LOAN_EDITED = "LOAN_EDITED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_REMOVED = "PAYMENT_REMOVED"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LoanStateError(Exception):
    """Base exception for all loan lifecycle errors."""
    code = "ERROR"


class TransitionError(LoanStateError):
    """Base exception for failures of an engine operation."""
    pass


class NotFound(TransitionError):
    """Raised when a loan, borrower or payment does not exist."""
    code = "NOT_FOUND"


class LoanNotFound(NotFound):
    """Raised when no loan exists with the requested id."""

    def __init__(self, loan_id: str):
        super().__init__(f"Loan not found: {loan_id}")
        self.loan_id = loan_id


class BorrowerNotFound(NotFound):
    """Raised when the borrower referenced by a loan does not exist."""

    def __init__(self, borrower_id: Optional[str]):
        super().__init__(f"Borrower not found: {borrower_id}")
        self.borrower_id = borrower_id


class PaymentNotFound(NotFound):
    """Raised when a loan has no live payment with the requested id."""

    def __init__(self, loan_id: str, payment_id: str):
        super().__init__(f"Payment not found: {payment_id} on loan {loan_id}")
        self.loan_id = loan_id
        self.payment_id = payment_id


class InvalidTransition(TransitionError):
    """Raised when the transition graph has no edge from the current status."""
    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: LoanStatus,
        to_status: LoanStatus,
        valid_next: Tuple[LoanStatus, ...],
    ):
        allowed = ", ".join(s.value for s in valid_next) or "none (terminal state)"
        super().__init__(
            f"Cannot transition from {from_status.value} to {to_status.value}. "
            f"Valid transitions: {allowed}"
        )
        self.from_status = from_status
        self.to_status = to_status
        self.valid_next = valid_next


class GuardRejected(TransitionError):
    """
    Raised when a structurally valid transition fails a business rule.

    The guard's reason is the exception message, unchanged, so callers can
    surface it verbatim.
    """
    code = "GUARD_REJECTED"

    def __init__(self, from_status: LoanStatus, to_status: LoanStatus, reason: str):
        super().__init__(reason)
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason


class PaymentRejected(TransitionError):
    """Raised when a payment is not acceptable for the loan's status or balance."""
    code = "VALIDATION"


class StorageFailure(TransitionError):
    """Raised when the atomic write failed. Nothing was committed."""
    code = "STORAGE_FAILURE"


class StaleLoanVersion(StorageFailure):
    """Raised when a loan write's expected version no longer matches the store."""

    def __init__(self, loan_id: str, expected: int, found: int):
        super().__init__(
            f"Loan {loan_id} was modified concurrently: expected version {expected}, found {found}"
        )
        self.loan_id = loan_id
        self.expected = expected
        self.found = found


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

def _require_int(name: str, value: Any) -> None:
    # bool is an int subclass; amounts must be real integers
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class Borrower:
    """
    Borrower credit profile used by underwriting guards.

    Attributes:
        borrower_id: Borrower identifier.
        name: Display name.
        credit_score: Credit score (300-850), None if not pulled yet.
        annual_income_micros: Gross annual income in micros, None if unknown.
        monthly_debt_micros: Existing monthly debt service in micros, None if unknown.
    """
    borrower_id: str
    name: str = ""
    credit_score: Optional[int] = None
    annual_income_micros: Optional[int] = None
    monthly_debt_micros: Optional[int] = None

    def __post_init__(self):
        if not self.borrower_id or not self.borrower_id.strip():
            raise ValueError("Borrower borrower_id cannot be empty")
        if self.credit_score is not None:
            _require_int("credit_score", self.credit_score)
            if not MIN_CREDIT_SCORE <= self.credit_score <= MAX_CREDIT_SCORE:
                raise ValueError(
                    f"credit_score must be between {MIN_CREDIT_SCORE} and "
                    f"{MAX_CREDIT_SCORE}, got {self.credit_score}"
                )
        for name in ("annual_income_micros", "monthly_debt_micros"):
            value = getattr(self, name)
            if value is not None:
                _require_int(name, value)
                if value < 0:
                    raise ValueError(f"{name} cannot be negative, got {value}")


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable snapshot of a loan.

    Each write produces a new instance via with_status() or dataclasses.replace.
    Terms are validated for type only: a DRAFT may hold incomplete terms
    (e.g. zero principal), which the submission guard rejects.

    Attributes:
        loan_id: Loan identifier.
        borrower_id: Borrower reference (may be empty on an incomplete draft).
        principal_amount_micros: Principal in micros.
        interest_rate_bps: Annual rate in basis points.
        term_months: Term in months.
        status: Current lifecycle status.
        status_changed_at: When the status last changed.
        created_at: When the loan was created.
        submitted_at: First entry into SUBMITTED (set once).
        approved_at: First entry into APPROVED (set once).
        disbursed_at: First entry into ACTIVE (set once).
        version: Write counter used for optimistic concurrency.
    """
    loan_id: str
    borrower_id: Optional[str]
    principal_amount_micros: int
    interest_rate_bps: int
    term_months: int
    status: LoanStatus = LoanStatus.DRAFT
    status_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    disbursed_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if not self.loan_id or not self.loan_id.strip():
            raise ValueError("Loan loan_id cannot be empty")
        _require_int("principal_amount_micros", self.principal_amount_micros)
        _require_int("interest_rate_bps", self.interest_rate_bps)
        _require_int("term_months", self.term_months)
        if not isinstance(self.status, LoanStatus):
            raise ValueError(f"Loan status must be LoanStatus, got {type(self.status).__name__}")

    def with_status(self, to_status: LoanStatus, now: datetime) -> Loan:
        """
        Return a copy moved to to_status at time now.

        First-entry timestamps are filled only when still unset, so re-entering
        a status never overwrites them.
        """
        changes: Dict[str, Any] = {
            "status": to_status,
            "status_changed_at": now,
            "version": self.version + 1,
        }
        if to_status is LoanStatus.SUBMITTED and self.submitted_at is None:
            changes["submitted_at"] = now
        if to_status is LoanStatus.APPROVED and self.approved_at is None:
            changes["approved_at"] = now
        if to_status is LoanStatus.ACTIVE and self.disbursed_at is None:
            changes["disbursed_at"] = now
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class Payment:
    """A payment received against a loan. Soft-deleted payments carry deleted_at."""
    payment_id: str
    loan_id: str
    amount_micros: int
    paid_at: datetime
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        _require_int("amount_micros", self.amount_micros)
        if self.amount_micros <= 0:
            raise ValueError(f"Payment amount must be positive, got {self.amount_micros}")


@dataclass(frozen=True, slots=True)
class LoanEvent:
    """
    Immutable audit ledger entry.

    STATUS_CHANGE events are the transition records: exactly one per accepted
    transition, written in the same store transaction as the loan update.
    from_status is None only for the LOAN_CREATED event.
    """
    event_id: str
    loan_id: str
    event_type: EventType
    actor_id: str
    occurred_at: datetime
    description: str
    from_status: Optional[LoanStatus] = None
    to_status: Optional[LoanStatus] = None
    reason: Optional[str] = None
    metadata: Optional[Mapping[str, Any]] = None
    changes: Optional[Mapping[str, Tuple[Any, Any]]] = None
    payment_id: Optional[str] = None
    payment_amount_micros: Optional[int] = None

    def __repr__(self) -> str:
        return f"LoanEvent({self.event_type.value} {self.loan_id}: {self.description})"


@dataclass(frozen=True, slots=True)
class GuardResult:
    """Outcome of a guard check. reason is set only when not allowed."""
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> GuardResult:
        return cls(True)

    @classmethod
    def reject(cls, reason: str) -> GuardResult:
        return cls(False, reason)


@dataclass(frozen=True, slots=True)
class TransitionContext:
    """
    Inputs available to guards.

    remaining_balance_micros is None when the caller supplies no balance data;
    the payoff guard treats that as a manual override.
    """
    loan: Loan
    borrower: Optional[Borrower]
    remaining_balance_micros: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TransitionOption:
    """One graph-reachable next status and whether its guard currently passes."""
    to_status: LoanStatus
    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AvailableTransitions:
    """Read-only view of what can happen next to a loan."""
    current_status: LoanStatus
    transitions: Tuple[TransitionOption, ...] = field(default_factory=tuple)

    def allowed_statuses(self) -> List[LoanStatus]:
        return [option.to_status for option in self.transitions if option.allowed]


# ============================================================================
# STORAGE PROTOCOLS
# ============================================================================

T = TypeVar("T")


class StoreTransaction(Protocol):
    """
    Write handle valid only inside LoanStore.with_transaction().

    Writes become visible only when the enclosing transaction commits.
    """

    def save_loan(self, loan: Loan, expected_version: Optional[int] = None) -> None:
        """
        Insert or replace a loan.

        If expected_version is given, the stored loan must currently have that
        version, otherwise StaleLoanVersion is raised.
        """
        ...

    def append_event(self, event: LoanEvent) -> None:
        """Append an audit event."""
        ...

    def add_payment(self, payment: Payment) -> None:
        """Record a payment."""
        ...

    def remove_payment(self, payment_id: str, deleted_at: datetime) -> None:
        """Soft-delete a payment by stamping deleted_at."""
        ...


@runtime_checkable
class LoanStore(Protocol):
    """
    Storage collaborator consumed by the engine.

    Reads return immutable snapshots. All writes go through with_transaction(),
    which commits when fn returns and rolls back if fn raises.
    """

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        ...

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        ...

    def sum_payments(self, loan_id: str) -> int:
        """Sum of non-deleted payment amounts for the loan, 0 if none."""
        ...

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        """The payment with this id, including soft-deleted ones."""
        ...

    def list_events(self, loan_id: str) -> List[LoanEvent]:
        """Audit events for the loan in the order they were appended."""
        ...

    def with_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        ...
