"""
Order expiry sweeper tests
"""

import pytest
from unittest.mock import patch
from jobs.order_expiry_job import EXPIRY_JOB_ID, OrderExpiryScheduler, main
from utils.exceptions import Conflict, ValidationFailed

BUYER_ID = 601
ADDRESS_ID = 12


def _place(lifecycle, product, quantity=2, payment_method="online"):
    return lifecycle.create_order(
        BUYER_ID, [{"product_id": product.id, "quantity": quantity}], ADDRESS_ID, payment_method=payment_method
    )


class TestExpireStaleOrders:

    def test_stale_online_order_expires_and_restocks(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100", stock=10)
        placed = _place(lifecycle, mug, quantity=2)
        assert seed.stock(mug.id) == 8

        clock.advance(minutes=40)
        result = expiry.expire_stale_orders(30)

        assert result["expired_count"] == 1
        assert result["expired_orders"] == [placed["order_number"]]
        assert result["errors"] == []
        order = seed.order(placed["id"])
        assert order.status == "expired"
        assert order.expired_at == clock.now
        assert order.inventory_reserved is False
        assert [item.item_status for item in order.items] == ["expired"]
        assert seed.stock(mug.id) == 10

    @pytest.mark.asyncio
    async def test_expiry_closes_open_payment_intent(self, lifecycle, settlement, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100", stock=10)
        placed = _place(lifecycle, mug)
        await settlement.create_payment_intent(placed["id"])

        clock.advance(minutes=40)
        expiry.expire_stale_orders(30)

        assert [t.payment_status for t in seed.transactions(placed["id"])] == ["failed"]

    def test_second_sweep_is_a_no_op(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100", stock=10)
        _place(lifecycle, mug)
        clock.advance(minutes=40)

        expiry.expire_stale_orders(30)
        again = expiry.expire_stale_orders(30)

        assert again["expired_count"] == 0
        assert seed.stock(mug.id) == 10, "Stock must be restored only once"

    def test_fresh_orders_are_left_alone(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100")
        placed = _place(lifecycle, mug)

        clock.advance(minutes=29)
        result = expiry.expire_stale_orders(30)

        assert result["expired_count"] == 0
        assert seed.order(placed["id"]).status == "pending"

    def test_cash_on_delivery_never_expires(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100")
        placed = _place(lifecycle, mug, payment_method="cod")

        clock.advance(minutes=600)
        result = expiry.expire_stale_orders(30)

        assert result["expired_count"] == 0
        assert seed.order(placed["id"]).status == "pending"
        assert seed.stock(mug.id) == 8

    def test_settled_and_cancelled_orders_are_not_candidates(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100", stock=20)
        paid = _place(lifecycle, mug)
        cancelled = _place(lifecycle, mug)
        seed.set_order_fields(paid["id"], status="confirmed", payment_status="paid")
        lifecycle.cancel_order(cancelled["id"], BUYER_ID)

        clock.advance(minutes=60)
        result = expiry.expire_stale_orders(30)

        assert result["expired_count"] == 0
        assert seed.order(paid["id"]).status == "confirmed"
        assert seed.order(cancelled["id"]).status == "cancelled"
        assert seed.stock(mug.id) == 18

    def test_cancelled_expired_order_cannot_be_cancelled(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100")
        placed = _place(lifecycle, mug)
        clock.advance(minutes=31)
        expiry.expire_stale_orders(30)

        with pytest.raises(Conflict):
            lifecycle.cancel_order(placed["id"], BUYER_ID)
        assert seed.stock(mug.id) == 10

    def test_order_that_changed_after_scan_is_skipped(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100")
        placed = _place(lifecycle, mug)
        clock.advance(minutes=40)

        def settled_meanwhile(cutoff):
            seed.set_order_fields(placed["id"], status="confirmed", payment_status="paid")
            return [placed["id"]]

        with patch.object(expiry, "_find_candidates", side_effect=settled_meanwhile):
            result = expiry.expire_stale_orders(30)

        assert result["expired_count"] == 0
        assert result["skipped"] == 1
        assert seed.order(placed["id"]).status == "confirmed"
        assert seed.stock(mug.id) == 8

    def test_default_ttl_is_thirty_minutes(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100")
        _place(lifecycle, mug)

        clock.advance(minutes=31)
        assert expiry.expire_stale_orders()["expired_count"] == 1

    @pytest.mark.parametrize("ttl", [0, -5, "30", 1.5])
    def test_invalid_ttl_rejected(self, expiry, ttl):
        with pytest.raises(ValidationFailed):
            expiry.expire_stale_orders(ttl)


class TestOrderExpiryScheduler:

    def test_setup_registers_single_interval_job(self, expiry):
        scheduler = OrderExpiryScheduler(expiry, interval_minutes=5, ttl_minutes=30)

        scheduler.setup_jobs()
        scheduler.setup_jobs()

        jobs = scheduler.scheduler.get_jobs()
        assert [job.id for job in jobs] == [EXPIRY_JOB_ID]
        assert jobs[0].max_instances == 1
        assert jobs[0].coalesce is True

    @pytest.mark.asyncio
    async def test_sweep_runs_expiry_with_configured_ttl(self, lifecycle, expiry, seed, clock):
        seller = seed.seller()
        mug = seed.product(seller, "100")
        _place(lifecycle, mug)
        clock.advance(minutes=20)

        scheduler = OrderExpiryScheduler(expiry, interval_minutes=5, ttl_minutes=15)
        result = await scheduler.run_expiry_sweep()

        assert result["expired_count"] == 1

    def test_command_line_single_sweep(self):
        with patch("jobs.order_expiry_job.run_order_expiry", return_value={"expired_count": 0, "expired_orders": []}) as run:
            result = main(["--once", "--ttl", "45"])

        run.assert_called_once_with(45)
        assert result["expired_count"] == 0
