"""
Order State Transition Validator
================================

Prevents invalid order status changes and keeps the lifecycle integrity:
no transition out of a terminal state, no skipping payment confirmation.
"""

import logging
from typing import Dict, Set, Optional, Tuple
from models import OrderStatus
from utils.datetime_helpers import get_naive_utc_now
from utils.exceptions import Conflict

logger = logging.getLogger(__name__)


class StateTransitionError(Conflict):
    """Raised when an invalid state transition is attempted"""
    code = "invalid_transition"


class OrderStateValidator:
    """
    Validates order state transitions.

    Prevents invalid transitions like:
    - CANCELLED -> CONFIRMED (resurrection)
    - PENDING -> SHIPPED (skipping payment)
    - EXPIRED -> anything
    """

    VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
        OrderStatus.PENDING: {
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
            OrderStatus.EXPIRED,
        },
        OrderStatus.CONFIRMED: {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,  # only while unpaid, enforced by cancel_order
            OrderStatus.REFUNDED,
        },
        OrderStatus.PROCESSING: {
            OrderStatus.SHIPPED,
            OrderStatus.COMPLETED,
            OrderStatus.REFUNDED,
        },
        OrderStatus.COMPLETED: {
            OrderStatus.SHIPPED,
            OrderStatus.REFUNDED,
        },
        OrderStatus.SHIPPED: {
            OrderStatus.DELIVERED,
        },
        OrderStatus.DELIVERED: set(),
        OrderStatus.CANCELLED: set(),
        OrderStatus.EXPIRED: set(),
        OrderStatus.REFUNDED: set(),
    }

    TERMINAL_STATES: Set[OrderStatus] = {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
        OrderStatus.REFUNDED,
    }

    # Statuses whose column is stamped when entered
    TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
        OrderStatus.CONFIRMED: "confirmed_at",
        OrderStatus.PROCESSING: "processing_at",
        OrderStatus.SHIPPED: "shipped_at",
        OrderStatus.DELIVERED: "delivered_at",
        OrderStatus.COMPLETED: "completed_at",
        OrderStatus.CANCELLED: "cancelled_at",
        OrderStatus.EXPIRED: "expired_at",
        OrderStatus.REFUNDED: "refunded_at",
    }

    @classmethod
    def is_terminal(cls, status) -> bool:
        return OrderStatus(status) in cls.TERMINAL_STATES

    @classmethod
    def validate_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
        order_ref: Optional[str] = None,
    ) -> Tuple[bool, str]:
        """
        Validate if a state transition is allowed.

        Returns:
            Tuple[bool, str]: (is_valid, reason)
        """
        ref = f"Order {order_ref}" if order_ref else "Order"

        if from_status == to_status:
            return False, f"Order already {from_status.value}"

        valid_next_states = cls.VALID_TRANSITIONS.get(from_status, set())
        if to_status in valid_next_states:
            logger.debug(f"VALID_TRANSITION: {ref} {from_status.value} -> {to_status.value}")
            return True, "Valid state transition"

        logger.warning(
            f"❌ INVALID_TRANSITION: {ref} {from_status.value} -> {to_status.value} "
            f"Valid options: {sorted(s.value for s in valid_next_states)}"
        )
        return False, f"Invalid transition: {from_status.value} -> {to_status.value}"

    @classmethod
    def validate_and_transition(cls, order, new_status: OrderStatus, now=None) -> None:
        """
        Validate and apply a status change to an order and its items.

        Raises:
            StateTransitionError: If the transition is invalid
        """
        current = OrderStatus(order.status)
        is_valid, reason = cls.validate_transition(current, new_status, order.order_number)
        if not is_valid:
            raise StateTransitionError(reason)

        now = now or get_naive_utc_now()
        order.status = new_status.value
        order.updated_at = now
        timestamp_field = cls.TIMESTAMP_FIELDS.get(new_status)
        if timestamp_field:
            setattr(order, timestamp_field, now)
        for item in order.items:
            item.item_status = new_status.value
