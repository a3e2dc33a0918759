"""Pricing engine: totals, rounding and the total-equals-sum invariant"""

import pytest
from decimal import Decimal
from services.pricing_engine import PricingEngine


class TestPricingEngine:

    @pytest.fixture
    def engine(self):
        return PricingEngine(
            tax_rate=Decimal("0.10"),
            platform_fee_rate=Decimal("0.02"),
            shipping_cost=Decimal("5"),
        )

    def test_two_line_cart_totals(self, engine):
        totals = engine.calculate_order_totals([(Decimal("500"), 2), (Decimal("1000"), 1)])

        assert totals.subtotal == Decimal("2000.00")
        assert totals.tax_amount == Decimal("200.00")
        assert totals.platform_fee == Decimal("40.00")
        assert totals.shipping_cost == Decimal("5.00")
        assert totals.total_amount == Decimal("2245.00")

    def test_total_is_sum_of_rounded_components(self, engine):
        totals = engine.calculate_order_totals([(Decimal("19.99"), 3), (Decimal("0.35"), 1)])

        assert totals.subtotal == Decimal("60.32")
        assert totals.tax_amount == Decimal("6.03")
        assert totals.platform_fee == Decimal("1.21")
        assert totals.total_amount == (
            totals.subtotal + totals.tax_amount + totals.shipping_cost + totals.platform_fee
        ), "Total must equal the sum of its stored components"

    def test_half_up_rounding(self, engine):
        # 0.25 * 0.10 = 0.025 -> 0.03 under half-up
        totals = engine.calculate_order_totals([(Decimal("0.25"), 1)])
        assert totals.tax_amount == Decimal("0.03")

    def test_line_subtotal(self):
        assert PricingEngine.calculate_line(Decimal("12.50"), 4) == Decimal("50.00")

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_line_rejects_non_positive_quantity(self, quantity):
        with pytest.raises(ValueError):
            PricingEngine.calculate_line(Decimal("10"), quantity)

    def test_empty_cart_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.calculate_order_totals([])

    def test_defaults_come_from_config(self):
        engine = PricingEngine()
        totals = engine.calculate_order_totals([(Decimal("100"), 1)])
        assert totals.total_amount == Decimal("117.00")
