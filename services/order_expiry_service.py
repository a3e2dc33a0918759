"""
Order Expiry Service - stale unpaid prepaid orders
Moves pending online orders older than the TTL to expired and gives their
reserved stock back. Each order is handled in its own transaction.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from config import Config
from models import Order, OrderStatus, PaymentMethod
from services.inventory_service import InventoryService
from services.payment_settlement_service import fail_pending_charges
from utils.atomic_transactions import atomic_transaction, read_only_session
from utils.database_locking import DatabaseLockingService
from utils.datetime_helpers import ensure_naive_datetime, get_naive_utc_now
from utils.exceptions import OrderServiceError, ValidationFailed
from utils.order_state_validator import OrderStateValidator

logger = logging.getLogger(__name__)


class OrderExpiryService:
    """Stateless, re-entrant sweeper for unpaid prepaid orders"""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Optional[Callable] = None,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or get_naive_utc_now
        self.batch_size = batch_size or Config.ORDER_EXPIRY_BATCH_SIZE

    @staticmethod
    def _is_stale(order: Order, cutoff) -> bool:
        return (
            order.status == OrderStatus.PENDING.value
            and order.payment_method == PaymentMethod.ONLINE.value
            and order.created_at < cutoff
        )

    def _find_candidates(self, cutoff) -> List[int]:
        with read_only_session(self.session_factory) as session:
            return list(session.execute(
                select(Order.id).where(
                    Order.status == OrderStatus.PENDING.value,
                    Order.payment_method == PaymentMethod.ONLINE.value,
                    Order.created_at < cutoff,
                ).order_by(Order.created_at).limit(self.batch_size)
            ).scalars().all())

    def _expire_one(self, order_id: int, cutoff, now) -> Optional[str]:
        """Expire one order under its row lock; returns the order number or None if skipped"""
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id, skip_locked=True)
            if order is None:
                return None
            # Settled, cancelled or already expired since the scan
            if not self._is_stale(order, cutoff):
                logger.info(f"⏭️ EXPIRY_SKIPPED: Order {order.order_number} is now {order.status}")
                return None

            OrderStateValidator.validate_and_transition(order, OrderStatus.EXPIRED, now)
            InventoryService.release(session, order)
            fail_pending_charges(session, order.id, now)
            return order.order_number

    def expire_stale_orders(self, ttl_minutes: Optional[int] = None) -> Dict[str, Any]:
        """
        Expire pending online orders created more than ttl_minutes ago.

        Cash-on-delivery orders are never expired. A failure on one order
        rolls back only that order and is reported in "errors".

        Returns:
            {"expired_count", "expired_orders", "skipped", "errors"}
        """
        ttl = Config.ORDER_EXPIRY_MINUTES if ttl_minutes is None else ttl_minutes
        if not isinstance(ttl, int) or isinstance(ttl, bool) or ttl <= 0:
            raise ValidationFailed(f"ttl_minutes must be a positive integer, got {ttl!r}")

        now = ensure_naive_datetime(self.clock())
        cutoff = now - timedelta(minutes=ttl)
        results = {
            "expired_count": 0,
            "expired_orders": [],
            "skipped": 0,
            "errors": [],
        }

        candidate_ids = self._find_candidates(cutoff)
        if not candidate_ids:
            logger.debug("⏰ ORDER_EXPIRY: No stale orders")
            return results

        logger.info(f"⏰ ORDER_EXPIRY: {len(candidate_ids)} candidate orders older than {ttl} minutes")
        for order_id in candidate_ids:
            try:
                order_number = self._expire_one(order_id, cutoff, now)
            except OrderServiceError as e:
                logger.error(f"❌ ORDER_EXPIRY_FAILED: Order {order_id}: {e.message}")
                results["errors"].append({"order_id": order_id, "error": e.message})
                continue

            if order_number is None:
                results["skipped"] += 1
                continue
            results["expired_count"] += 1
            results["expired_orders"].append(order_number)
            logger.info(f"⏰ ORDER_EXPIRED: {order_number}")

        logger.info(
            f"✅ ORDER_EXPIRY_COMPLETE: expired={results['expired_count']} "
            f"skipped={results['skipped']} errors={len(results['errors'])}"
        )
        return results
