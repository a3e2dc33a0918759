"""Identifier generation and small formatting helpers"""

import secrets
import string
from datetime import datetime
from typing import Optional

from utils.datetime_helpers import get_naive_utc_now

_ID_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Human readable order number, e.g. ORD-20261018-7K2M9QXA"""
    now = now or get_naive_utc_now()
    return f"ORD-{now:%Y%m%d}-{_random_suffix(8)}"


def generate_transaction_id() -> str:
    """Public transaction identifier, e.g. TX5F3A9C0B1D2E"""
    return f"TX{secrets.token_hex(6).upper()}"


def generate_receipt(order_number: str) -> str:
    """Gateway receipt reference (Razorpay caps receipts at 40 chars)"""
    return order_number[:40]
