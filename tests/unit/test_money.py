"""
test_money.py - Unit tests for fixed-point money helpers

Tests:
- Dollar <-> micro conversion
- Display formatting and input parsing
- Basis point conversion
- Integer ceiling division
"""

import pytest
from decimal import Decimal

from loanstate import (
    MICROS_PER_DOLLAR, dollars_to_micros, micros_to_dollars,
    parse_amount, format_amount, parse_rate, format_rate, ceil_div,
)
from loanstate.money import bps_to_decimal, ceil_to_micros


class TestConversion:
    """Dollar and micro conversions."""

    def test_scale(self):
        assert MICROS_PER_DOLLAR == 10_000

    def test_dollars_to_micros(self):
        assert dollars_to_micros("50000.12") == 500_001_200
        assert dollars_to_micros(Decimal("50000.1234")) == 500_001_234
        assert dollars_to_micros(1) == 10_000

    def test_extra_places_round_half_even(self):
        assert dollars_to_micros("0.00005") == 0
        assert dollars_to_micros("0.00015") == 2

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            dollars_to_micros(1.5)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            dollars_to_micros("abc")
        with pytest.raises(ValueError):
            dollars_to_micros("Infinity")

    def test_micros_to_dollars(self):
        assert micros_to_dollars(500_001_234) == Decimal("50000.1234")
        assert micros_to_dollars(0) == Decimal("0.0000")


class TestFormatting:
    """Display and parsing at the UI boundary."""

    def test_format_amount(self):
        assert format_amount(500_001_200) == "$50,000.12"
        assert format_amount(0) == "$0.00"
        assert format_amount(12_345_600) == "$1,234.56"

    def test_format_negative(self):
        assert format_amount(-12_345) == "-$1.23"

    def test_format_custom_decimals(self):
        assert format_amount(500_001_234, decimals=4) == "$50,000.1234"

    def test_parse_amount(self):
        assert parse_amount("$1,234.56") == 12_345_600
        assert parse_amount(" 100 ") == 1_000_000

    def test_rates(self):
        assert parse_rate("5.50%") == 550
        assert parse_rate("5.5") == 550
        assert format_rate(550) == "5.50%"
        assert format_rate(0) == "0.00%"
        assert bps_to_decimal(550) == Decimal("0.055")


class TestIntegerRounding:
    """Ceiling helpers."""

    def test_ceil_div(self):
        assert ceil_div(500_000_000, 12) == 41_666_667
        assert ceil_div(12, 12) == 1
        assert ceil_div(0, 5) == 0

    def test_ceil_div_rejects_zero_denominator(self):
        with pytest.raises(ValueError):
            ceil_div(1, 0)

    def test_ceil_to_micros(self):
        assert ceil_to_micros(Decimal("10.0001")) == 11
        assert ceil_to_micros(Decimal("10")) == 10
