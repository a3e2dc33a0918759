"""Order pricing: subtotal, tax, buyer platform fee, shipping and grand total"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from config import Config
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    platform_fee: Decimal
    shipping_cost: Decimal
    total_amount: Decimal

    def as_dict(self):
        return {
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "platform_fee": self.platform_fee,
            "shipping_cost": self.shipping_cost,
            "total_amount": self.total_amount,
        }


class PricingEngine:
    """Pure price computation; no database access"""

    def __init__(
        self,
        tax_rate: Optional[Decimal] = None,
        platform_fee_rate: Optional[Decimal] = None,
        shipping_cost: Optional[Decimal] = None,
    ):
        self.tax_rate = Decimal(str(tax_rate if tax_rate is not None else Config.TAX_RATE))
        self.platform_fee_rate = Decimal(
            str(platform_fee_rate if platform_fee_rate is not None else Config.PLATFORM_FEE_RATE)
        )
        self.shipping_cost = MonetaryDecimal.round2(
            shipping_cost if shipping_cost is not None else Config.FLAT_SHIPPING_COST
        )

    @staticmethod
    def calculate_line(unit_price, quantity: int) -> Decimal:
        """Line subtotal = quantity x unit price"""
        if quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {quantity}")
        return MonetaryDecimal.round2(MonetaryDecimal.to_decimal(unit_price) * quantity)

    def calculate_order_totals(self, lines: Iterable[Tuple[Decimal, int]]) -> OrderTotals:
        """
        Compute order totals from (unit_price, quantity) pairs.

        Each component is rounded to 2 dp before summing, so the stored total
        always equals the sum of the stored components.
        """
        subtotal = Decimal("0.00")
        line_count = 0
        for unit_price, quantity in lines:
            subtotal += self.calculate_line(unit_price, quantity)
            line_count += 1
        if line_count == 0:
            raise ValueError("Cannot price an empty order")

        subtotal = MonetaryDecimal.round2(subtotal)
        tax_amount = MonetaryDecimal.multiply_precise(subtotal, self.tax_rate)
        platform_fee = MonetaryDecimal.multiply_precise(subtotal, self.platform_fee_rate)
        shipping_cost = self.shipping_cost
        total_amount = subtotal + tax_amount + platform_fee + shipping_cost

        return OrderTotals(
            subtotal=subtotal,
            tax_amount=tax_amount,
            platform_fee=platform_fee,
            shipping_cost=shipping_cost,
            total_amount=total_amount,
        )
