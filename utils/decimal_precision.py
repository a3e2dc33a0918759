#!/usr/bin/env python3
"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all monetary operations
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    MONEY_PRECISION = Decimal("0.01")  # 2 decimal places
    RATE_PRECISION = Decimal("0.0001")  # commission and tax rates

    @classmethod
    def to_decimal(cls, value: Union[str, int, float, Decimal], context: str = "monetary") -> Decimal:
        """Convert any numeric value to Decimal, raising ValueError on garbage"""
        if value is None:
            raise ValueError(f"Missing monetary value in context {context}")

        if isinstance(value, Decimal):
            return value

        try:
            # Convert to string first to avoid float precision issues
            decimal_value = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            logger.error(f"Failed to convert {value} to Decimal in context {context}: {e}")
            raise ValueError(f"Invalid monetary value {value!r}") from e

        if not decimal_value.is_finite():
            raise ValueError(f"Invalid monetary value {value!r}")

        if abs(decimal_value) > Decimal("999999999999"):
            logger.warning(f"Unusually large monetary value: {decimal_value} in context: {context}")

        return decimal_value

    @classmethod
    def round2(cls, amount: Union[str, int, float, Decimal]) -> Decimal:
        """Quantize to 2 decimal places, half away from zero"""
        return cls.to_decimal(amount).quantize(cls.MONEY_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def multiply_precise(cls, amount: Union[str, int, float, Decimal],
                         multiplier: Union[str, int, float, Decimal]) -> Decimal:
        """Multiply and quantize to money precision"""
        return cls.round2(cls.to_decimal(amount) * cls.to_decimal(multiplier))

    @classmethod
    def to_minor_units(cls, amount: Union[str, int, float, Decimal]) -> int:
        """Convert a major-unit amount to integer minor units (cents/paise)"""
        return int((cls.round2(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))

    @classmethod
    def from_minor_units(cls, minor: int) -> Decimal:
        return cls.round2(Decimal(int(minor)) / 100)

    @classmethod
    def format_amount(cls, amount: Union[str, int, float, Decimal]) -> str:
        return str(cls.round2(amount))


# Convenience functions
def to_decimal(value, context: str = "monetary") -> Decimal:
    return MonetaryDecimal.to_decimal(value, context)


def round2(amount) -> Decimal:
    return MonetaryDecimal.round2(amount)
