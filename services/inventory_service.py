"""
Inventory Service
Single-point reservation and release of product stock for an order.

An order's stock moves at most once: reserve() sets order.inventory_reserved,
release() clears it. Both are no-ops when the flag is already in the target
state, so repeated cancel/expire/settle paths cannot double-apply.
"""

import logging
from sqlalchemy import update
from sqlalchemy.orm import Session
from models import Order, Product
from utils.exceptions import Conflict, NotFound

logger = logging.getLogger(__name__)


class InventoryService:
    """Conditional stock updates; never read-then-write"""

    @staticmethod
    def decrement(session: Session, product_id: int, quantity: int) -> None:
        """
        Atomically take quantity from a product.

        Raises:
            Conflict: If stock is insufficient
            NotFound: If the product does not exist
        """
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.quantity_available >= quantity)
            .values(quantity_available=Product.quantity_available - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if session.get(Product, product_id) is None:
                raise NotFound(f"Product {product_id} not found")
            raise Conflict(f"Insufficient stock for product {product_id}")

    @staticmethod
    def increment(session: Session, product_id: int, quantity: int) -> None:
        session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(quantity_available=Product.quantity_available + quantity)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _items_in_lock_order(order: Order):
        # Product rows are updated in id order, matching create_order's lock order
        return sorted(order.items, key=lambda item: item.product_id)

    @classmethod
    def reserve(cls, session: Session, order: Order) -> bool:
        """Take stock for every item of the order; returns False if already reserved"""
        if order.inventory_reserved:
            return False
        for item in cls._items_in_lock_order(order):
            cls.decrement(session, item.product_id, item.quantity)
        order.inventory_reserved = True
        logger.info(f"📦 INVENTORY_RESERVED: Order {order.order_number} ({len(order.items)} lines)")
        return True

    @classmethod
    def release(cls, session: Session, order: Order) -> bool:
        """Return stock for every item of the order; returns False if nothing was reserved"""
        if not order.inventory_reserved:
            return False
        for item in cls._items_in_lock_order(order):
            cls.increment(session, item.product_id, item.quantity)
        order.inventory_reserved = False
        logger.info(f"📦 INVENTORY_RELEASED: Order {order.order_number} ({len(order.items)} lines)")
        return True
