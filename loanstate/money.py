"""
money.py - Fixed-point money and rate arithmetic

All monetary values are integers in micro-units (10,000ths of a dollar):
    $50,000.12 -> 500_001_200 micros
Interest rates are integers in basis points (1 bp = 0.01%):
    5.50% -> 550 bps

No binary floating point is used anywhere. Conversion to and from Decimal
happens only at input/display boundaries.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_EVEN, InvalidOperation, localcontext
from typing import Union

from .core import AMOUNT_SCALE, BPS_PER_UNIT, MICROS_PER_DOLLAR

# Precision for intermediate Decimal computations.
DECIMAL_PRECISION = 50

_MICRO = Decimal(1).scaleb(-AMOUNT_SCALE)

Numeric = Union[Decimal, int, str]


def _to_decimal(value: Numeric) -> Decimal:
    if isinstance(value, float):
        raise TypeError("float is not accepted for money; pass Decimal or str")
    try:
        d = Decimal(value.strip()) if isinstance(value, str) else Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}") from None
    if d.is_nan() or d.is_infinite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return d


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer ceiling division for positive denominators."""
    if denominator <= 0:
        raise ValueError(f"denominator must be positive, got {denominator}")
    return -(-numerator // denominator)


def ceil_to_micros(value: Decimal) -> int:
    """Round a Decimal amount of micros up to a whole micro."""
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def dollars_to_micros(amount: Numeric) -> int:
    """
    Convert a dollar amount to micros.

    Values with more than four decimal places are rounded half-even.

    Example:
        dollars_to_micros("50000.12") -> 500001200
    """
    d = _to_decimal(amount)
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return int((d * MICROS_PER_DOLLAR).to_integral_value(rounding=ROUND_HALF_EVEN))


def micros_to_dollars(micros: int) -> Decimal:
    """Convert micros to an exact Decimal dollar amount (four places)."""
    return (Decimal(micros) / MICROS_PER_DOLLAR).quantize(_MICRO)


def parse_amount(text: str) -> int:
    """Parse user input like "1,234.56" or "$1234.56" into micros."""
    cleaned = text.strip().replace(",", "").replace("$", "")
    return dollars_to_micros(cleaned)


def format_amount(micros: int, decimals: int = 2) -> str:
    """
    Format micros for display as US dollars.

    Example:
        format_amount(500001200) -> "$50,000.12"
        format_amount(-12345) -> "-$1.23"
    """
    dollars = Decimal(micros) / MICROS_PER_DOLLAR
    quantum = Decimal(1).scaleb(-decimals)
    rounded = abs(dollars).quantize(quantum, rounding=ROUND_HALF_EVEN)
    sign = "-" if micros < 0 and rounded != 0 else ""
    return f"{sign}${rounded:,.{decimals}f}"


def parse_rate(percent: Numeric) -> int:
    """Parse a percentage ("5.5" or "5.50%") into basis points."""
    if isinstance(percent, str):
        percent = percent.strip().rstrip("%")
    d = _to_decimal(percent)
    return int((d * 100).to_integral_value(rounding=ROUND_HALF_EVEN))


def format_rate(bps: int) -> str:
    """Format basis points as a percentage: 550 -> "5.50%"."""
    return f"{(Decimal(bps) / 100).quantize(Decimal('0.01'))}%"


def bps_to_decimal(bps: int) -> Decimal:
    """Convert basis points to a plain Decimal rate: 550 -> Decimal("0.055")."""
    return Decimal(bps) / BPS_PER_UNIT
