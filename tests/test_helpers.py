"""Identifier and datetime helpers"""

import re
from datetime import datetime, timedelta, timezone
from utils.datetime_helpers import ensure_naive_datetime, isoformat_or_none
from utils.helpers import generate_order_number, generate_receipt, generate_transaction_id


class TestIdentifiers:

    def test_order_number_format(self):
        number = generate_order_number(datetime(2026, 10, 18, 9, 30))
        assert re.fullmatch(r"ORD-20261018-[A-Z0-9]{8}", number), number

    def test_order_numbers_are_unique(self):
        now = datetime(2026, 10, 18)
        assert len({generate_order_number(now) for _ in range(200)}) == 200

    def test_transaction_id_format(self):
        assert re.fullmatch(r"TX[0-9A-F]{12}", generate_transaction_id())

    def test_receipt_capped_at_forty_chars(self):
        assert generate_receipt("ORD-20261018-ABCDEFGH") == "ORD-20261018-ABCDEFGH"
        assert len(generate_receipt("X" * 60)) == 40


class TestDatetimeHelpers:

    def test_aware_datetime_converted_to_naive_utc(self):
        aware = datetime(2026, 10, 18, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_naive_datetime(aware) == datetime(2026, 10, 18, 12, 0)

    def test_naive_and_none_pass_through(self):
        naive = datetime(2026, 10, 18, 12, 0)
        assert ensure_naive_datetime(naive) is naive
        assert ensure_naive_datetime(None) is None

    def test_isoformat_or_none(self):
        assert isoformat_or_none(None) is None
        assert isoformat_or_none(datetime(2026, 10, 18, 12, 0)) == "2026-10-18T12:00:00"
