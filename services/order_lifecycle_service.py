"""
Order Lifecycle Service
Order creation, cancellation, fulfilment status changes and order queries.

Prices always come from the products table; client-supplied prices are never
read. Inventory is reserved once at creation and released once on
cancellation (see InventoryService).
"""

import logging
import math
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker
from config import Config
from models import (
    Order, OrderItem, OrderCustomization, ProductCustomization,
    OrderStatus, PaymentMethod, PaymentStatus,
)
from services.inventory_service import InventoryService
from services.payment_settlement_service import fail_pending_charges
from services.pricing_engine import PricingEngine
from utils.atomic_transactions import atomic_transaction, read_only_session
from utils.database_locking import DatabaseLockingService
from utils.datetime_helpers import get_naive_utc_now, isoformat_or_none
from utils.exceptions import Conflict, NotFound, ValidationFailed
from utils.helpers import generate_order_number
from utils.order_state_validator import OrderStateValidator

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = {OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value}

# Fulfilment moves allowed through update_order_status; confirmation, cancellation,
# expiry and refund have their own operations
FULFILMENT_STATUSES = {
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
}

MAX_PAGE_SIZE = 100


def _parse_payment_method(payment_method) -> PaymentMethod:
    try:
        return payment_method if isinstance(payment_method, PaymentMethod) else PaymentMethod(payment_method)
    except ValueError:
        raise ValidationFailed(f"Unsupported payment method: {payment_method}")


class OrderLifecycleService:
    """Orchestrates order creation, cancellation and status changes"""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        pricing_engine: Optional[PricingEngine] = None,
        clock: Optional[Callable] = None,
        expiry_minutes: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.pricing_engine = pricing_engine or PricingEngine()
        self.clock = clock or get_naive_utc_now
        self.expiry_minutes = expiry_minutes or Config.ORDER_EXPIRY_MINUTES

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_cart(cart_lines) -> List[Dict[str, Any]]:
        if not cart_lines:
            raise ValidationFailed("Cart is empty")
        lines = []
        for index, line in enumerate(cart_lines):
            product_id = line.get("product_id")
            quantity = line.get("quantity")
            if not isinstance(product_id, int) or isinstance(product_id, bool):
                raise ValidationFailed(f"Cart line {index} has invalid product_id {product_id!r}")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise ValidationFailed(f"Cart line {index} has invalid quantity {quantity!r}")
            lines.append({
                "product_id": product_id,
                "quantity": quantity,
                "customizations": list(line.get("customizations") or []),
            })
        return lines

    @staticmethod
    def _resolve_customizations(session: Session, product_id: int, selections) -> List[Dict[str, Any]]:
        """Map buyer selections to server-side labels and price adjustments"""
        resolved = []
        for selection in selections:
            customization_id = selection.get("customization_id")
            value = selection.get("value")
            if customization_id is None:
                # Free text personalisation carries no price
                resolved.append({
                    "customization_id": None,
                    "label": selection.get("label") or "Note",
                    "value": value,
                    "price_adjustment": 0,
                })
                continue
            option = session.get(ProductCustomization, customization_id)
            if option is None or option.product_id != product_id:
                raise ValidationFailed(
                    f"Customization {customization_id} is not offered on product {product_id}"
                )
            resolved.append({
                "customization_id": option.id,
                "label": option.label,
                "value": value,
                "price_adjustment": option.price_adjustment,
            })
        return resolved

    def create_order(
        self,
        buyer_id: int,
        cart_lines: List[Dict[str, Any]],
        shipping_address_id: Optional[int],
        payment_method=PaymentMethod.ONLINE,
        billing_address_id: Optional[int] = None,
        coupon_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a pending order, freezing prices and reserving stock.

        All-or-nothing: a missing product, short stock or write failure leaves
        no order and no inventory change.

        Raises:
            ValidationFailed: Empty cart, bad quantity or missing address
            NotFound: A product does not exist
            Conflict: Insufficient stock
        """
        lines = self._validate_cart(cart_lines)
        if not shipping_address_id:
            raise ValidationFailed("Shipping address is required")
        method = _parse_payment_method(payment_method)
        if coupon_code:
            logger.info(f"🏷️ COUPON_IGNORED: Coupon {coupon_code} supplied by buyer {buyer_id}, no discount applied")

        now = self.clock()
        with atomic_transaction(self.session_factory) as session:
            # Lock in id order so overlapping carts cannot deadlock
            products = {}
            for product_id in sorted({line["product_id"] for line in lines}):
                products[product_id] = DatabaseLockingService.lock_product(session, product_id)

            priced_lines = []
            for line in lines:
                product = products[line["product_id"]]
                if not product.is_active:
                    raise NotFound(f"Product {product.id} is not available")
                if product.quantity_available < line["quantity"]:
                    raise Conflict(f"Insufficient stock for product {product.id}")
                customizations = self._resolve_customizations(session, product.id, line["customizations"])
                unit_price = product.final_price + sum(
                    (c["price_adjustment"] for c in customizations), 0
                )
                priced_lines.append((line, product, unit_price, customizations))

            seller_ids = {product.seller_id for _, product, _, _ in priced_lines}
            seller_id = priced_lines[0][1].seller_id
            if len(seller_ids) > 1:
                logger.warning(
                    f"⚠️ MULTI_SELLER_CART: Buyer {buyer_id} cart spans sellers {sorted(seller_ids)}; "
                    f"order pinned to seller {seller_id}"
                )

            totals = self.pricing_engine.calculate_order_totals(
                (unit_price, line["quantity"]) for line, _, unit_price, _ in priced_lines
            )

            order = Order(
                order_number=generate_order_number(now),
                buyer_id=buyer_id,
                seller_id=seller_id,
                status=OrderStatus.PENDING.value,
                payment_method=method.value,
                payment_status=PaymentStatus.PENDING.value,
                currency=Config.ORDER_CURRENCY,
                shipping_address_id=shipping_address_id,
                billing_address_id=billing_address_id or shipping_address_id,
                coupon_code=coupon_code,
                inventory_reserved=False,
                created_at=now,
                updated_at=now,
                **totals.as_dict(),
            )
            session.add(order)

            for line, product, unit_price, customizations in priced_lines:
                item = OrderItem(
                    product_id=product.id,
                    seller_id=product.seller_id,
                    quantity=line["quantity"],
                    unit_price=unit_price,
                    subtotal=self.pricing_engine.calculate_line(unit_price, line["quantity"]),
                    item_status=OrderStatus.PENDING.value,
                )
                for c in customizations:
                    item.customizations.append(OrderCustomization(
                        customization_id=c["customization_id"],
                        label=c["label"],
                        customization_value=c["value"],
                        price_adjustment=c["price_adjustment"],
                    ))
                order.items.append(item)

            session.flush()
            InventoryService.reserve(session, order)
            session.flush()

            result = {
                "success": True,
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "items": len(order.items),
                "subtotal": order.subtotal,
                "tax_amount": order.tax_amount,
                "platform_fee": order.platform_fee,
                "shipping_cost": order.shipping_cost,
                "total_amount": order.total_amount,
                "currency": order.currency,
                "payment_method": order.payment_method,
                "payment_required": method == PaymentMethod.ONLINE,
                "created_at": isoformat_or_none(order.created_at),
            }

        logger.info(
            f"✅ ORDER_CREATED: {result['order_number']} buyer={buyer_id} seller={seller_id} "
            f"total={result['total_amount']} {result['currency']}"
        )
        return result

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_order(self, order_id: int, actor_id: int) -> Dict[str, Any]:
        """
        Cancel an unpaid order and give its stock back.

        Raises:
            NotFound: Order missing or not owned by actor_id
            Conflict: Order is paid or in a status that cannot be cancelled
        """
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id)
            if order.buyer_id != actor_id:
                raise NotFound(f"Order {order_id} not found")
            if order.status not in CANCELLABLE_STATUSES or order.payment_status == PaymentStatus.PAID.value:
                raise Conflict(f"cancel not allowed for status {order.status}")

            now = self.clock()
            OrderStateValidator.validate_and_transition(order, OrderStatus.CANCELLED, now)
            InventoryService.release(session, order)
            fail_pending_charges(session, order.id, now)

            result = {
                "success": True,
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "message": "Order cancelled successfully",
            }

        logger.info(f"🚫 ORDER_CANCELLED: {result['order_number']} by buyer {actor_id}")
        return result

    # ------------------------------------------------------------------
    # Fulfilment
    # ------------------------------------------------------------------

    def update_order_status(
        self,
        order_id: int,
        new_status,
        tracking_number: Optional[str] = None,
        seller_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Move a paid order through fulfilment (processing, shipped, delivered, completed)"""
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationFailed(f"Unknown order status: {new_status}")
        if target not in FULFILMENT_STATUSES:
            raise ValidationFailed(f"Status {target.value} cannot be set directly")

        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id)
            if seller_id is not None and order.seller_id != seller_id:
                raise NotFound(f"Order {order_id} not found")

            OrderStateValidator.validate_and_transition(order, target, self.clock())
            if tracking_number:
                order.tracking_number = tracking_number

            result = {
                "success": True,
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "tracking_number": order.tracking_number,
            }

        logger.info(f"✅ STATUS_UPDATE: Order {result['order_number']} -> {target.value}")
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def can_cancel(self, order: Order) -> bool:
        return order.status in CANCELLABLE_STATUSES and order.payment_status != PaymentStatus.PAID.value

    def expires_at(self, order: Order):
        """Payment deadline for pending prepaid orders, None otherwise"""
        if order.payment_method == PaymentMethod.ONLINE.value and order.status == OrderStatus.PENDING.value:
            return order.created_at + timedelta(minutes=self.expiry_minutes)
        return None

    @staticmethod
    def _timeline(order: Order) -> List[Dict[str, Any]]:
        events = [{"status": OrderStatus.PENDING.value, "at": order.created_at}]
        for status, field in OrderStateValidator.TIMESTAMP_FIELDS.items():
            at = getattr(order, field)
            if at is not None:
                events.append({"status": status.value, "at": at})
        events.sort(key=lambda e: e["at"])
        return [{"status": e["status"], "at": e["at"].isoformat()} for e in events]

    def _summary(self, order: Order) -> Dict[str, Any]:
        return {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "total_amount": order.total_amount,
            "currency": order.currency,
            "created_at": isoformat_or_none(order.created_at),
            "can_cancel": self.can_cancel(order),
            "expires_at": isoformat_or_none(self.expires_at(order)),
        }

    def get_order_details(self, order_id: int, actor_id: Optional[int] = None) -> Dict[str, Any]:
        """Order with items, customizations and the cancel/expiry projection"""
        with read_only_session(self.session_factory) as session:
            order = session.get(Order, order_id)
            if order is None or (actor_id is not None and actor_id not in (order.buyer_id, order.seller_id)):
                raise NotFound(f"Order {order_id} not found")

            details = self._summary(order)
            details.update({
                "buyer_id": order.buyer_id,
                "seller_id": order.seller_id,
                "subtotal": order.subtotal,
                "tax_amount": order.tax_amount,
                "shipping_cost": order.shipping_cost,
                "platform_fee": order.platform_fee,
                "shipping_address_id": order.shipping_address_id,
                "billing_address_id": order.billing_address_id,
                "tracking_number": order.tracking_number,
                "items": [
                    {
                        "id": item.id,
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                        "subtotal": item.subtotal,
                        "item_status": item.item_status,
                        "customizations": [
                            {
                                "label": c.label,
                                "value": c.customization_value,
                                "price_adjustment": c.price_adjustment,
                            }
                            for c in item.customizations
                        ],
                    }
                    for item in order.items
                ],
                "timeline": self._timeline(order),
            })
            return details

    def _list_orders(self, column, owner_id: int, page: int, limit: int, status: Optional[str]) -> Dict[str, Any]:
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
        conditions = [column == owner_id]
        if status:
            conditions.append(Order.status == status)

        with read_only_session(self.session_factory) as session:
            total = session.execute(select(func.count(Order.id)).where(*conditions)).scalar_one()
            orders = session.execute(
                select(Order)
                .where(*conditions)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()

            return {
                "orders": [self._summary(order) for order in orders],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "total_pages": math.ceil(total / limit) if total else 0,
                },
            }

    def list_buyer_orders(self, buyer_id: int, page: int = 1, limit: int = 10, status: Optional[str] = None):
        return self._list_orders(Order.buyer_id, buyer_id, page, limit, status)

    def list_seller_orders(self, seller_id: int, page: int = 1, limit: int = 10, status: Optional[str] = None):
        return self._list_orders(Order.seller_id, seller_id, page, limit, status)
