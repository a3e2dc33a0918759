"""
Database Row-Level Locking Utilities
Provides row-level locking with SELECT FOR UPDATE and SKIP LOCKED for orders,
products and sellers. Locks are held until the surrounding transaction ends.
"""

import logging
from typing import Optional
from sqlalchemy import select, text
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError
from config import Config
from models import Order, Product, Seller
from utils.exceptions import Conflict, NotFound

logger = logging.getLogger(__name__)


class LockTimeoutError(Conflict):
    """Row lock could not be acquired in time"""
    code = "lock_timeout"
    retryable = True


class DatabaseLockingService:
    """Row-level locks with lock timeout handling"""

    DEFAULT_LOCK_TIMEOUT = Config.DB_LOCK_TIMEOUT_SECONDS

    @classmethod
    def _set_lock_timeout(cls, session: Session, timeout_seconds: Optional[int] = None):
        # SET LOCAL only exists on PostgreSQL; other dialects fall back to their own waits
        if session.get_bind().dialect.name != "postgresql":
            return
        timeout = int(timeout_seconds or cls.DEFAULT_LOCK_TIMEOUT)
        session.execute(text(f"SET LOCAL lock_timeout = '{timeout}s'"))

    @classmethod
    def _locked_one(cls, session: Session, stmt, label: str, skip_locked: bool = False):
        cls._set_lock_timeout(session)
        try:
            row = session.execute(
                stmt.with_for_update(skip_locked=skip_locked).execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except OperationalError as e:
            if "timeout" in str(e).lower():
                logger.error(f"🕐 LOCK_TIMEOUT: Failed to lock {label}")
                raise LockTimeoutError(f"Lock timeout for {label}") from e
            raise
        if row is not None:
            logger.debug(f"🔒 LOCKED: {label} locked for update")
        elif skip_locked:
            logger.info(f"🔒 SKIP_LOCKED: {label} is locked by another process or gone")
        return row

    @classmethod
    def lock_order(cls, session: Session, order_id: int, skip_locked: bool = False) -> Optional[Order]:
        """
        Lock an order row for the rest of the transaction.

        Returns None only when skip_locked=True and the row is busy.

        Raises:
            NotFound: If the order does not exist (and skip_locked is False)
        """
        order = cls._locked_one(
            session, select(Order).where(Order.id == order_id), f"order {order_id}", skip_locked
        )
        if order is None and not skip_locked:
            raise NotFound(f"Order {order_id} not found")
        return order

    @classmethod
    def lock_order_by_gateway_id(cls, session: Session, gateway_order_id: str) -> Optional[Order]:
        return cls._locked_one(
            session,
            select(Order).where(Order.gateway_order_id == gateway_order_id),
            f"order with gateway id {gateway_order_id}",
        )

    @classmethod
    def lock_product(cls, session: Session, product_id: int) -> Product:
        product = cls._locked_one(
            session, select(Product).where(Product.id == product_id), f"product {product_id}"
        )
        if product is None:
            raise NotFound(f"Product {product_id} not found")
        return product

    @classmethod
    def lock_seller(cls, session: Session, seller_id: int) -> Seller:
        seller = cls._locked_one(
            session, select(Seller).where(Seller.id == seller_id), f"seller {seller_id}"
        )
        if seller is None:
            raise NotFound(f"Seller {seller_id} not found")
        return seller
