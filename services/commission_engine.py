"""Seller commission tiers, earning split and milestone badges"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
from config import Config
from models import SellerBadge
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)

# (completed orders reached, badge)
BADGE_MILESTONES: Tuple[Tuple[int, SellerBadge], ...] = (
    (1, SellerBadge.FIRST_ORDER),
    (10, SellerBadge.FIRST_10_ORDERS),
    (50, SellerBadge.FIRST_50_ORDERS),
)


@dataclass(frozen=True)
class CommissionSplit:
    commission_rate: Decimal
    platform_fee_amount: Decimal
    seller_earning_amount: Decimal


class CommissionEngine:
    """Pure commission computation keyed by a seller's completed-order count"""

    def __init__(self, tiers: Optional[Sequence[Tuple[int, Decimal]]] = None):
        # Highest threshold first so the first match wins
        self.tiers = sorted(tiers or Config.COMMISSION_TIERS, key=lambda t: t[0], reverse=True)

    def commission_rate(self, completed_after: int) -> Decimal:
        """
        Rate for the seller's Nth completed order (N = completed_after).

        1-10 -> 0, 11-50 -> 0.03, 51+ -> 0.07 with the default tiers.
        """
        if completed_after < 1:
            raise ValueError(f"completed_after must be >= 1, got {completed_after}")
        for threshold, rate in self.tiers:
            if completed_after >= threshold:
                return Decimal(str(rate))
        return Decimal("0")

    @staticmethod
    def calculate_split(gross_amount, rate) -> CommissionSplit:
        gross = MonetaryDecimal.round2(gross_amount)
        rate = MonetaryDecimal.to_decimal(rate, "commission_rate")
        platform_fee_amount = MonetaryDecimal.multiply_precise(gross, rate)
        return CommissionSplit(
            commission_rate=rate,
            platform_fee_amount=platform_fee_amount,
            seller_earning_amount=gross - platform_fee_amount,
        )

    def settle(self, gross_amount, completed_after: int) -> CommissionSplit:
        return self.calculate_split(gross_amount, self.commission_rate(completed_after))

    @staticmethod
    def milestone_badges(completed_after: int) -> List[str]:
        """Every milestone badge a seller with this many completed orders has earned"""
        return [badge.value for threshold, badge in BADGE_MILESTONES if completed_after >= threshold]

    @staticmethod
    def merge_badges(existing: Optional[Iterable[str]], earned: Iterable[str]) -> Tuple[List[str], List[str]]:
        """
        Union earned badges into the held set, preserving order.

        Returns:
            (all_badges, newly_added)
        """
        badges = list(existing or [])
        added = []
        for badge in earned:
            if badge not in badges:
                badges.append(badge)
                added.append(badge)
        return badges, added
