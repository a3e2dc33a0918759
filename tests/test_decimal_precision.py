"""
Regression Tests for Decimal Precision in Monetary Operations
"""

import pytest
from decimal import Decimal
from utils.decimal_precision import MonetaryDecimal, round2, to_decimal


class TestMonetaryDecimal:

    def test_float_input_goes_through_string(self):
        assert to_decimal(0.1) == Decimal("0.1"), "Float must not leak binary noise"

    @pytest.mark.parametrize("value", [None, "abc", "NaN", "Infinity"])
    def test_garbage_is_rejected(self, value):
        with pytest.raises(ValueError):
            MonetaryDecimal.to_decimal(value)

    @pytest.mark.parametrize("amount,expected", [
        ("2.345", Decimal("2.35")),
        ("2.344", Decimal("2.34")),
        ("0.005", Decimal("0.01")),
        (10, Decimal("10.00")),
    ])
    def test_round_half_up(self, amount, expected):
        assert round2(amount) == expected

    def test_multiply_rounds_result(self):
        assert MonetaryDecimal.multiply_precise("19.99", "0.03") == Decimal("0.60")

    def test_minor_units(self):
        assert MonetaryDecimal.to_minor_units("2245.00") == 224500
        assert MonetaryDecimal.to_minor_units("0.015") == 2
        assert MonetaryDecimal.from_minor_units(224501) == Decimal("2245.01")

    def test_format_amount(self):
        assert MonetaryDecimal.format_amount("1234.5") == "1234.50"
