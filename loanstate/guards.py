"""
guards.py - Business-Rule Guards for Status Transitions

The transition graph decides whether a status change is structurally legal.
Guards decide whether a structurally legal change is allowed for this loan,
this borrower and this payment history.

Guards are pure functions (policy, context) -> GuardResult, registered in a
table keyed by the (from_status, to_status) pair. A graph-valid pair with no
registered guard is allowed: the graph has already gated it.

Thresholds come from an UnderwritingPolicy so tests and callers can
substitute them without touching module constants.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple

from .core import (
    GuardResult, LoanStatus, TransitionContext,
    MIN_CREDIT_SCORE_FOR_APPROVAL, MAX_DTI_RATIO,
)
from .amortization import debt_to_income_ratio, monthly_payment_micros


@dataclass(frozen=True, slots=True)
class UnderwritingPolicy:
    """
    Immutable underwriting thresholds.

    Attributes:
        min_credit_score: Lowest credit score that can be approved.
        max_dti_ratio: Highest debt-to-income ratio that can be approved (plain ratio).
    """
    min_credit_score: int = MIN_CREDIT_SCORE_FOR_APPROVAL
    max_dti_ratio: Decimal = MAX_DTI_RATIO

    def __post_init__(self):
        if not isinstance(self.max_dti_ratio, Decimal):
            object.__setattr__(self, 'max_dti_ratio', Decimal(str(self.max_dti_ratio)))
        if self.max_dti_ratio <= 0:
            raise ValueError(f"max_dti_ratio must be positive, got {self.max_dti_ratio}")


GuardFn = Callable[[UnderwritingPolicy, TransitionContext], GuardResult]
TransitionKey = Tuple[LoanStatus, LoanStatus]


# ============================================================================
# GUARD FUNCTIONS
# ============================================================================

def submission_guard(policy: UnderwritingPolicy, ctx: TransitionContext) -> GuardResult:
    """DRAFT -> SUBMITTED: the application must be complete."""
    loan = ctx.loan
    if not loan.borrower_id:
        return GuardResult.reject("Borrower is required")
    if loan.principal_amount_micros <= 0:
        return GuardResult.reject("Principal amount must be greater than 0")
    if loan.interest_rate_bps < 0:
        return GuardResult.reject("Interest rate cannot be negative")
    if loan.term_months < 1:
        return GuardResult.reject("Term must be at least 1 month")
    return GuardResult.allow()


def approval_guard(policy: UnderwritingPolicy, ctx: TransitionContext) -> GuardResult:
    """
    UNDER_REVIEW -> APPROVED: credit score and debt-to-income checks.

    The DTI check is skipped when the borrower's income is missing or zero,
    so a loan can be approved on credit score alone when income data is absent.
    """
    borrower = ctx.borrower
    score = borrower.credit_score if borrower is not None else None
    if score is None:
        return GuardResult.reject("Borrower credit score is required for approval")
    if score < policy.min_credit_score:
        return GuardResult.reject(
            f"Credit score {score} is below minimum {policy.min_credit_score}"
        )

    loan = ctx.loan
    try:
        payment = monthly_payment_micros(
            loan.principal_amount_micros, loan.interest_rate_bps, loan.term_months
        )
    except ValueError as exc:
        return GuardResult.reject(f"Loan terms are invalid: {exc}")

    dti = debt_to_income_ratio(borrower, payment)
    if dti is not None and dti > policy.max_dti_ratio:
        dti_percent = f"{dti * 100:.1f}"
        max_percent = f"{policy.max_dti_ratio * 100:.0f}"
        return GuardResult.reject(
            f"Debt-to-income ratio {dti_percent}% exceeds maximum {max_percent}%"
        )
    return GuardResult.allow()


def payoff_guard(policy: UnderwritingPolicy, ctx: TransitionContext) -> GuardResult:
    """
    ACTIVE -> PAID_OFF: no remaining balance.

    A context without balance data is a manual override and passes.
    """
    balance = ctx.remaining_balance_micros
    if balance is not None and balance > 0:
        return GuardResult.reject(
            "Cannot mark as paid off while there is a remaining balance"
        )
    return GuardResult.allow()


S = LoanStatus

DEFAULT_GUARDS: Mapping[TransitionKey, GuardFn] = MappingProxyType({
    (S.DRAFT, S.SUBMITTED): submission_guard,
    (S.UNDER_REVIEW, S.APPROVED): approval_guard,
    (S.ACTIVE, S.PAID_OFF): payoff_guard,
})


# ============================================================================
# EVALUATOR
# ============================================================================

class GuardEvaluator:
    """
    Looks up and runs the guard for a (from_status, to_status) pair.

    Example:
        evaluator = GuardEvaluator(UnderwritingPolicy(min_credit_score=680))
        result = evaluator.evaluate(LoanStatus.UNDER_REVIEW, LoanStatus.APPROVED, ctx)
        if not result.allowed:
            print(result.reason)
    """

    def __init__(
        self,
        policy: Optional[UnderwritingPolicy] = None,
        guards: Optional[Mapping[TransitionKey, GuardFn]] = None,
    ):
        self.policy = policy or UnderwritingPolicy()
        self._guards: Mapping[TransitionKey, GuardFn] = MappingProxyType(
            dict(DEFAULT_GUARDS if guards is None else guards)
        )

    def has_guard(self, from_status: LoanStatus, to_status: LoanStatus) -> bool:
        return (from_status, to_status) in self._guards

    def evaluate(
        self,
        from_status: LoanStatus,
        to_status: LoanStatus,
        context: TransitionContext,
    ) -> GuardResult:
        """
        Evaluate the guard for from_status -> to_status.

        Callers check the transition graph first; this only answers the
        business-rule question for a structurally valid pair.
        """
        guard = self._guards.get((from_status, to_status))
        if guard is None:
            return GuardResult.allow()
        return guard(self.policy, context)


def evaluate(
    from_status: LoanStatus,
    to_status: LoanStatus,
    context: TransitionContext,
    policy: Optional[UnderwritingPolicy] = None,
) -> GuardResult:
    """Evaluate with the default guard table."""
    return GuardEvaluator(policy).evaluate(from_status, to_status, context)
