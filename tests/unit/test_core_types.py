"""
test_core_types.py - Unit tests for core value types

Tests:
- Loan, Borrower and Payment validation
- First-entry lifecycle timestamps
- Exception taxonomy and messages
"""

import pytest
from datetime import datetime, timedelta

from loanstate import (
    Borrower, Loan, LoanStatus, Payment, GuardResult, AvailableTransitions, TransitionOption,
    LoanStateError, TransitionError, NotFound, LoanNotFound, BorrowerNotFound,
    InvalidTransition, GuardRejected, PaymentRejected, StorageFailure, StaleLoanVersion,
)
from tests.fake_store import make_loan

S = LoanStatus
T0 = datetime(2025, 1, 1)


class TestBorrower:

    def test_valid(self):
        b = Borrower("b-1", "Ada", credit_score=850, annual_income_micros=0, monthly_debt_micros=0)
        assert b.credit_score == 850

    def test_all_optional(self):
        b = Borrower("b-1")
        assert b.credit_score is None
        assert b.annual_income_micros is None

    @pytest.mark.parametrize("score", [299, 851])
    def test_score_out_of_range(self, score):
        with pytest.raises(ValueError, match="credit_score"):
            Borrower("b-1", credit_score=score)

    def test_negative_income(self):
        with pytest.raises(ValueError, match="annual_income_micros"):
            Borrower("b-1", annual_income_micros=-1)

    def test_float_money_rejected(self):
        with pytest.raises(ValueError, match="must be int"):
            Borrower("b-1", monthly_debt_micros=10.5)

    def test_empty_id(self):
        with pytest.raises(ValueError):
            Borrower("  ")


class TestLoan:

    def test_incomplete_draft_allowed(self):
        loan = make_loan(principal_amount_micros=0, borrower_id=None)
        assert loan.principal_amount_micros == 0

    def test_non_int_terms_rejected(self):
        with pytest.raises(ValueError, match="principal_amount_micros"):
            make_loan(principal_amount_micros=100.0)
        with pytest.raises(ValueError, match="term_months"):
            make_loan(term_months=True)

    def test_status_must_be_enum(self):
        with pytest.raises(ValueError):
            make_loan(status="DRAFT")

    def test_with_status_sets_first_entry_timestamps(self):
        loan = make_loan(status=S.DRAFT)
        submitted = loan.with_status(S.SUBMITTED, T0)
        assert submitted.submitted_at == T0
        assert submitted.status_changed_at == T0
        assert submitted.version == loan.version + 1
        assert loan.status is S.DRAFT  # source loan untouched

    def test_with_status_never_overwrites(self):
        loan = make_loan(status=S.DELINQUENT, disbursed_at=T0)
        later = T0 + timedelta(days=30)
        active = loan.with_status(S.ACTIVE, later)
        assert active.disbursed_at == T0
        assert active.status_changed_at == later

    def test_with_status_approved(self):
        approved = make_loan(status=S.UNDER_REVIEW).with_status(S.APPROVED, T0)
        assert approved.approved_at == T0
        assert approved.submitted_at is None


class TestPayment:

    def test_positive_amount_required(self):
        with pytest.raises(ValueError):
            Payment("p-1", "loan-1", 0, T0)

    def test_valid(self):
        assert Payment("p-1", "loan-1", 10_000, T0).deleted_at is None


class TestValueTypes:

    def test_guard_result_helpers(self):
        assert GuardResult.allow() == GuardResult(True, None)
        assert GuardResult.reject("no") == GuardResult(False, "no")

    def test_available_transitions_allowed_statuses(self):
        view = AvailableTransitions(S.ACTIVE, (
            TransitionOption(S.DELINQUENT, True),
            TransitionOption(S.PAID_OFF, False, "balance"),
            TransitionOption(S.REFINANCED, True),
        ))
        assert view.allowed_statuses() == [S.DELINQUENT, S.REFINANCED]


class TestExceptions:
    """Exception taxonomy."""

    def test_hierarchy(self):
        for exc_type in (NotFound, InvalidTransition, GuardRejected, PaymentRejected, StorageFailure):
            assert issubclass(exc_type, TransitionError)
            assert issubclass(exc_type, LoanStateError)
        assert issubclass(LoanNotFound, NotFound)
        assert issubclass(BorrowerNotFound, NotFound)
        assert issubclass(StaleLoanVersion, StorageFailure)

    def test_codes(self):
        assert LoanNotFound("x").code == "NOT_FOUND"
        assert InvalidTransition(S.DRAFT, S.ACTIVE, ()).code == "INVALID_TRANSITION"
        assert GuardRejected(S.DRAFT, S.SUBMITTED, "r").code == "GUARD_REJECTED"
        assert PaymentRejected("r").code == "VALIDATION"
        assert StorageFailure("r").code == "STORAGE_FAILURE"

    def test_invalid_transition_message_lists_next(self):
        exc = InvalidTransition(S.DRAFT, S.ACTIVE, (S.SUBMITTED, S.WITHDRAWN))
        assert str(exc) == (
            "Cannot transition from DRAFT to ACTIVE. Valid transitions: SUBMITTED, WITHDRAWN"
        )

    def test_invalid_transition_message_terminal(self):
        exc = InvalidTransition(S.PAID_OFF, S.ACTIVE, ())
        assert str(exc).endswith("Valid transitions: none (terminal state)")

    def test_guard_rejected_message_is_reason(self):
        exc = GuardRejected(S.DRAFT, S.SUBMITTED, "Principal amount must be greater than 0")
        assert str(exc) == "Principal amount must be greater than 0"
        assert exc.reason == str(exc)
