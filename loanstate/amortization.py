"""
amortization.py - Payment and Affordability Calculations

Pure functions with explicit inputs; no storage access.

Key Formulas:
    r = rate_bps / 10000 / 12                   (monthly rate)
    payment = P * r * (1 + r)^n / ((1 + r)^n - 1)
    payment = P / n                             (when r = 0)
    DTI = (monthly_debt + payment) / (annual_income / 12)

Payments are rounded up to a whole micro so the schedule never under-collects.
Intermediate steps use Decimal at 50 digits of precision inside a local
context; the process-wide Decimal context is never modified.
"""

from __future__ import annotations
from decimal import Decimal, localcontext
from typing import Optional

from .core import Borrower, BPS_PER_UNIT, MONTHS_PER_YEAR
from .money import DECIMAL_PRECISION, ceil_div, ceil_to_micros


def _validate_terms(principal_micros: int, rate_bps: int, term_months: int) -> None:
    if term_months < 1:
        raise ValueError(f"term_months must be at least 1, got {term_months}")
    if rate_bps < 0:
        raise ValueError(f"rate_bps cannot be negative, got {rate_bps}")
    if principal_micros < 0:
        raise ValueError(f"principal_micros cannot be negative, got {principal_micros}")


def monthly_rate(rate_bps: int) -> Decimal:
    """Monthly periodic rate as a Decimal: 600 bps -> 0.005."""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return Decimal(rate_bps) / BPS_PER_UNIT / MONTHS_PER_YEAR


def monthly_payment_micros(principal_micros: int, rate_bps: int, term_months: int) -> int:
    """
    Level monthly payment for a fully amortizing loan, in micros.

    Args:
        principal_micros: Principal in micros
        rate_bps: Annual interest rate in basis points
        term_months: Number of monthly payments (>= 1)

    Returns:
        Payment rounded up to a whole micro.

    Example:
        monthly_payment_micros(500_000_000, 0, 12) -> 41_666_667
    """
    _validate_terms(principal_micros, rate_bps, term_months)
    if rate_bps == 0:
        return ceil_div(principal_micros, term_months)

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        r = monthly_rate(rate_bps)
        growth = (1 + r) ** term_months
        payment = Decimal(principal_micros) * r * growth / (growth - 1)
        return ceil_to_micros(payment)


def total_interest_micros(principal_micros: int, rate_bps: int, term_months: int) -> int:
    """Total interest paid over the full term at the level payment."""
    payment = monthly_payment_micros(principal_micros, rate_bps, term_months)
    return payment * term_months - principal_micros


def debt_to_income_ratio(borrower: Borrower, monthly_payment: int) -> Optional[Decimal]:
    """
    Debt-to-income ratio including the new loan's payment.

    Returns None when annual income is missing or zero; the caller decides
    what an unknown ratio means. Missing monthly debt counts as zero.
    The result is a plain ratio (0.43, not 43).
    """
    if not borrower.annual_income_micros:
        return None
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        monthly_income = Decimal(borrower.annual_income_micros) / MONTHS_PER_YEAR
        total_debt = Decimal((borrower.monthly_debt_micros or 0) + monthly_payment)
        return total_debt / monthly_income
