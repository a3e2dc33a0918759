"""Order status transitions"""

import pytest
from datetime import datetime
from types import SimpleNamespace
from models import OrderStatus
from utils.order_state_validator import OrderStateValidator, StateTransitionError
from utils.exceptions import Conflict


def _order(status):
    return SimpleNamespace(
        status=status.value,
        order_number="ORD-20261018-TEST0001",
        updated_at=None,
        confirmed_at=None,
        expired_at=None,
        shipped_at=None,
        items=[SimpleNamespace(item_status=status.value), SimpleNamespace(item_status=status.value)],
    )


class TestOrderStateValidator:

    @pytest.mark.parametrize("target", [OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.EXPIRED])
    def test_pending_exits(self, target):
        valid, _ = OrderStateValidator.validate_transition(OrderStatus.PENDING, target)
        assert valid

    @pytest.mark.parametrize("terminal", [
        OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.DELIVERED, OrderStatus.REFUNDED,
    ])
    def test_no_transition_out_of_terminal_states(self, terminal):
        assert OrderStateValidator.is_terminal(terminal.value)
        for target in OrderStatus:
            valid, _ = OrderStateValidator.validate_transition(terminal, target)
            assert not valid, f"{terminal.value} -> {target.value} must be refused"

    def test_pending_cannot_skip_payment(self):
        valid, reason = OrderStateValidator.validate_transition(OrderStatus.PENDING, OrderStatus.SHIPPED)
        assert not valid
        assert "pending -> shipped" in reason

    def test_shipping_path(self):
        for current, target in [
            (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
            (OrderStatus.COMPLETED, OrderStatus.SHIPPED),
        ]:
            valid, _ = OrderStateValidator.validate_transition(current, target)
            assert valid, f"{current.value} -> {target.value}"

    def test_apply_stamps_timestamp_and_items(self):
        order = _order(OrderStatus.PENDING)
        now = datetime(2026, 10, 18, 12, 30)

        OrderStateValidator.validate_and_transition(order, OrderStatus.EXPIRED, now)

        assert order.status == "expired"
        assert order.expired_at == now
        assert order.updated_at == now
        assert all(item.item_status == "expired" for item in order.items)

    def test_apply_refuses_invalid_move(self):
        order = _order(OrderStatus.CANCELLED)

        with pytest.raises(StateTransitionError) as exc_info:
            OrderStateValidator.validate_and_transition(order, OrderStatus.CONFIRMED)

        assert isinstance(exc_info.value, Conflict)
        assert order.status == "cancelled"
