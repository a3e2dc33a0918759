"""
Marketplace Order Ledger - Database Schema
==========================================

Schema for the order lifecycle and payment settlement core:
- Sellers with milestone badges and a locked completed-order counter
- Products with authoritative prices and inventory
- Orders, order items and buyer customizations
- Settlement transactions (charges and refunds) keyed by gateway reference

Timestamps are stored as naive UTC (see utils.datetime_helpers).
"""

from enum import Enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import DeclarativeBase, relationship

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class OrderStatus(Enum):
    """Order lifecycle status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    COMPLETED = "completed"


class PaymentStatus(Enum):
    """Order payment status"""
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    """How the buyer pays"""
    ONLINE = "online"  # prepaid through the payment gateway
    COD = "cod"  # cash on delivery


class TransactionType(Enum):
    """Settlement record kind"""
    CHARGE = "charge"
    REFUND = "refund"


class TransactionStatus(Enum):
    """Settlement record status"""
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


class RefundStatus(Enum):
    """Refund progress on a charge transaction"""
    NONE = "none"
    PENDING = "pending"  # claimed, gateway call in flight
    PARTIAL = "partial"
    FULL = "full"


class SellerBadge(Enum):
    """Milestone badges awarded on completed orders"""
    FIRST_ORDER = "FIRST_ORDER"
    FIRST_10_ORDERS = "FIRST_10_ORDERS"
    FIRST_50_ORDERS = "FIRST_50_ORDERS"


# ============================================================================
# MODELS
# ============================================================================

class Seller(Base):
    """Seller commission view: badges and completed-order counter"""
    __tablename__ = 'sellers'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    badges = Column(JSON, default=list, nullable=False)
    # Incremented under the seller row lock by settlement
    completed_order_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=True)

    products = relationship("Product", back_populates="seller")

    __table_args__ = (
        CheckConstraint('completed_order_count >= 0', name='ck_seller_completed_count_positive'),
    )


class Product(Base):
    """Product inventory view"""
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, ForeignKey('sellers.id'), nullable=False)
    name = Column(String(255), nullable=False)
    final_price = Column(Numeric(12, 2), nullable=False)  # authoritative price
    quantity_available = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=True)

    seller = relationship("Seller", back_populates="products")
    customizations = relationship("ProductCustomization", back_populates="product")

    __table_args__ = (
        CheckConstraint('quantity_available >= 0', name='ck_product_quantity_non_negative'),
        CheckConstraint('final_price >= 0', name='ck_product_price_non_negative'),
        Index('ix_products_seller', 'seller_id'),
    )


class ProductCustomization(Base):
    """Personalisation option offered on a product"""
    __tablename__ = 'product_customizations'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False)
    label = Column(String(255), nullable=False)
    price_adjustment = Column(Numeric(12, 2), default=0, nullable=False)

    product = relationship("Product", back_populates="customizations")


class Order(Base):
    """One purchase intent"""
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True)
    order_number = Column(String(40), nullable=False)
    buyer_id = Column(Integer, nullable=False)
    seller_id = Column(Integer, ForeignKey('sellers.id'), nullable=False)

    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False)
    payment_method = Column(String(20), default=PaymentMethod.ONLINE.value, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)

    # Buyer-facing amounts: total_amount = subtotal + tax_amount + shipping_cost + platform_fee
    subtotal = Column(Numeric(12, 2), nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    shipping_cost = Column(Numeric(12, 2), default=0, nullable=False)
    platform_fee = Column(Numeric(12, 2), default=0, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), default="USD", nullable=False)

    shipping_address_id = Column(Integer, nullable=False)
    billing_address_id = Column(Integer, nullable=True)
    coupon_code = Column(String(50), nullable=True)

    # Gateway linkage, set when the payment intent is created
    gateway_order_id = Column(String(100), nullable=True)

    # True while this order's single inventory adjustment is in effect
    inventory_reserved = Column(Boolean, default=False, nullable=False)

    # Seller-side split recorded at settlement
    commission_rate = Column(Numeric(5, 4), nullable=True)
    commission_amount = Column(Numeric(12, 2), nullable=True)
    seller_earning_amount = Column(Numeric(12, 2), nullable=True)

    tracking_number = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    processing_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    transactions = relationship("Transaction", back_populates="order", order_by="Transaction.id")
    seller = relationship("Seller")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'processing', 'shipped', 'delivered', "
            "'cancelled', 'expired', 'refunded', 'completed')",
            name='ck_order_status_valid',
        ),
        CheckConstraint("payment_method IN ('online', 'cod')", name='ck_order_payment_method_valid'),
        CheckConstraint('subtotal >= 0', name='ck_order_subtotal_non_negative'),
        CheckConstraint('tax_amount >= 0', name='ck_order_tax_non_negative'),
        CheckConstraint('shipping_cost >= 0', name='ck_order_shipping_non_negative'),
        CheckConstraint('platform_fee >= 0', name='ck_order_platform_fee_non_negative'),
        Index('ix_orders_order_number', 'order_number', unique=True),
        Index('ix_orders_gateway_order_id', 'gateway_order_id', unique=True),
        Index('ix_orders_status_method_created', 'status', 'payment_method', 'created_at'),
        Index('ix_orders_buyer', 'buyer_id'),
        Index('ix_orders_seller_status', 'seller_id', 'status'),
    )


class OrderItem(Base):
    """One product line within an order"""
    __tablename__ = 'order_items'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False)
    seller_id = Column(Integer, ForeignKey('sellers.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)  # frozen at order time
    subtotal = Column(Numeric(12, 2), nullable=False)
    item_status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    customizations = relationship("OrderCustomization", back_populates="order_item")

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_order_item_quantity_positive'),
        Index('ix_order_items_order', 'order_id'),
    )


class OrderCustomization(Base):
    """Buyer personalisation attached to an order item"""
    __tablename__ = 'order_customizations'

    id = Column(Integer, primary_key=True)
    order_item_id = Column(Integer, ForeignKey('order_items.id'), nullable=False)
    customization_id = Column(Integer, ForeignKey('product_customizations.id'), nullable=True)
    label = Column(String(255), nullable=False)
    customization_value = Column(Text, nullable=True)
    price_adjustment = Column(Numeric(12, 2), default=0, nullable=False)

    order_item = relationship("OrderItem", back_populates="customizations")


class Transaction(Base):
    """Settlement record: a charge or a refund against an order"""
    __tablename__ = 'transactions'

    id = Column(Integer, primary_key=True)
    transaction_id = Column(String(40), nullable=False)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    payer_id = Column(Integer, nullable=False)
    payee_id = Column(Integer, nullable=False)

    transaction_type = Column(String(20), default=TransactionType.CHARGE.value, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), default="USD", nullable=False)
    payment_method = Column(String(20), nullable=False)
    payment_provider = Column(String(30), nullable=True)
    payment_status = Column(String(20), default=TransactionStatus.PENDING.value, nullable=False)

    gateway_order_id = Column(String(100), nullable=True)
    # Gateway payment id for charges, gateway refund id for refunds
    payment_gateway_reference = Column(String(100), nullable=True)

    commission_rate = Column(Numeric(5, 4), nullable=True)
    platform_fee_amount = Column(Numeric(12, 2), nullable=True)
    seller_earning_amount = Column(Numeric(12, 2), nullable=True)

    refund_status = Column(String(20), default=RefundStatus.NONE.value, nullable=False)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    refund_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("transaction_type IN ('charge', 'refund')", name='ck_transaction_type_valid'),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'refunded', 'failed')",
            name='ck_transaction_status_valid',
        ),
        CheckConstraint('amount > 0', name='ck_transaction_amount_positive'),
        # Idempotency key for settlement and refunds
        UniqueConstraint('payment_gateway_reference', 'transaction_type', name='uq_transaction_gateway_reference'),
        Index('ix_transactions_transaction_id', 'transaction_id', unique=True),
        Index('ix_transactions_order', 'order_id'),
    )
