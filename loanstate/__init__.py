"""
loanstate - Regulated Loan Lifecycle Engine

Tracks a loan from draft application through underwriting to servicing and
closure, enforcing that every status change is structurally legal (a fixed
transition graph) and substantively legal (underwriting and servicing guards).

Usage:
    from loanstate import (
        TransitionEngine, InMemoryLoanStore, Borrower, LoanStatus, GuardRejected,
    )

    store = InMemoryLoanStore()
    store.add_borrower(Borrower("b-1", "Ada", credit_score=720,
                                annual_income_micros=800_000_000,
                                monthly_debt_micros=10_000_000))
    engine = TransitionEngine(store)

    loan = engine.create_loan("b-1", 500_000_000, 550, 60, actor_id="officer-7")
    engine.transition(loan.loan_id, LoanStatus.SUBMITTED, actor_id="officer-7")
    engine.transition(loan.loan_id, LoanStatus.UNDER_REVIEW, actor_id="underwriter-2")

    try:
        engine.transition(loan.loan_id, LoanStatus.APPROVED, actor_id="underwriter-2")
    except GuardRejected as exc:
        print(exc.reason)

Money is integer micros (10,000 per dollar) and rates are integer basis points.
"""

# Core types
from .core import (
    LoanStatus,
    EventType,
    Loan,
    Borrower,
    Payment,
    LoanEvent,
    GuardResult,
    TransitionContext,
    TransitionOption,
    AvailableTransitions,
    LoanStore,
    StoreTransaction,
    # Exceptions
    LoanStateError,
    TransitionError,
    NotFound,
    LoanNotFound,
    BorrowerNotFound,
    PaymentNotFound,
    InvalidTransition,
    GuardRejected,
    PaymentRejected,
    StorageFailure,
    StaleLoanVersion,
    # Constants
    MIN_CREDIT_SCORE_FOR_APPROVAL,
    MAX_DTI_RATIO,
    AMOUNT_SCALE,
    MICROS_PER_DOLLAR,
    BPS_PER_UNIT,
    DEFAULT_ACTOR,
    STATUS_LABELS,
    ORIGINATION_STATUSES,
    SERVICING_STATUSES,
    REQUIRES_ACTION_STATUSES,
    PAYMENT_ALLOWED_STATUSES,
)

# Money
from .money import (
    dollars_to_micros,
    micros_to_dollars,
    parse_amount,
    format_amount,
    parse_rate,
    format_rate,
    ceil_div,
)

# Transition graph
from .transitions import (
    TRANSITION_GRAPH,
    TERMINAL_STATUSES,
    is_valid_transition,
    next_statuses,
    is_terminal,
    status_category,
    requires_action,
)

# Amortization
from .amortization import (
    monthly_payment_micros,
    total_interest_micros,
    debt_to_income_ratio,
)

# Guards
from .guards import (
    UnderwritingPolicy,
    GuardEvaluator,
    DEFAULT_GUARDS,
    submission_guard,
    approval_guard,
    payoff_guard,
)

# Audit ledger
from .events import (
    describe_event,
    format_status,
    record_event,
    status_change_event,
    loan_created_event,
    payment_received_event,
    payment_removed_event,
    loan_edited_event,
)

# Storage
from .store import InMemoryLoanStore, LoanLocks
from .sqlite_store import SQLiteLoanStore

# Engine
from .engine import TransitionEngine

__version__ = "1.0.0"

__all__ = [
    # Core types
    "LoanStatus", "EventType", "Loan", "Borrower", "Payment", "LoanEvent",
    "GuardResult", "TransitionContext", "TransitionOption", "AvailableTransitions",
    "LoanStore", "StoreTransaction",
    # Exceptions
    "LoanStateError", "TransitionError", "NotFound", "LoanNotFound",
    "BorrowerNotFound", "PaymentNotFound", "InvalidTransition", "GuardRejected", "PaymentRejected",
    "StorageFailure", "StaleLoanVersion",
    # Constants
    "MIN_CREDIT_SCORE_FOR_APPROVAL", "MAX_DTI_RATIO", "AMOUNT_SCALE",
    "MICROS_PER_DOLLAR", "BPS_PER_UNIT", "DEFAULT_ACTOR", "STATUS_LABELS",
    "ORIGINATION_STATUSES", "SERVICING_STATUSES", "REQUIRES_ACTION_STATUSES",
    "PAYMENT_ALLOWED_STATUSES",
    # Money
    "dollars_to_micros", "micros_to_dollars", "parse_amount", "format_amount",
    "parse_rate", "format_rate", "ceil_div",
    # Transition graph
    "TRANSITION_GRAPH", "TERMINAL_STATUSES", "is_valid_transition",
    "next_statuses", "is_terminal", "status_category", "requires_action",
    # Amortization
    "monthly_payment_micros", "total_interest_micros", "debt_to_income_ratio",
    # Guards
    "UnderwritingPolicy", "GuardEvaluator", "DEFAULT_GUARDS",
    "submission_guard", "approval_guard", "payoff_guard",
    # Audit ledger
    "describe_event", "format_status", "record_event", "status_change_event",
    "loan_created_event", "payment_received_event", "payment_removed_event",
    "loan_edited_event",
    # Storage
    "InMemoryLoanStore", "LoanLocks", "SQLiteLoanStore",
    # Engine
    "TransitionEngine",
]
