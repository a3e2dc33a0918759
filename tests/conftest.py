"""
Shared fixtures for the order and payment test suites.

Key Components:
1. In-memory SQLite ledger with the full schema (one engine per test)
2. A frozen, advanceable clock injected into every service
3. Seeding helpers for sellers, products and customizations
4. A Razorpay client with real signature checks and mocked HTTP calls
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from unittest.mock import AsyncMock

from database import build_engine, create_session_factory, create_tables
from models import Order, Product, ProductCustomization, Seller, Transaction
from services.commission_engine import CommissionEngine
from services.order_expiry_service import OrderExpiryService
from services.order_lifecycle_service import OrderLifecycleService
from services.payment_settlement_service import PaymentSettlementService
from services.pricing_engine import PricingEngine
from services.razorpay_service import RazorpayService, compute_signature

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "test_key_secret"
TEST_WEBHOOK_SECRET = "test_webhook_secret"


class FrozenClock:
    """Callable clock the tests move by hand"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 0, seconds: int = 0):
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)


class LedgerSeeder:
    """Writes fixture rows and reads ledger state back in fresh sessions"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, obj):
        session = self.session_factory()
        try:
            session.add(obj)
            session.commit()
            return obj
        finally:
            session.close()

    def seller(self, name: str = "Handmade Co", completed: int = 0, badges: Optional[List[str]] = None) -> Seller:
        return self._add(Seller(name=name, completed_order_count=completed, badges=list(badges or [])))

    def product(self, seller: Seller, price, stock: int = 10, name: str = "Mug", active: bool = True) -> Product:
        return self._add(Product(
            seller_id=seller.id,
            name=name,
            final_price=Decimal(str(price)),
            quantity_available=stock,
            is_active=active,
        ))

    def customization(self, product: Product, label: str, adjustment) -> ProductCustomization:
        return self._add(ProductCustomization(
            product_id=product.id, label=label, price_adjustment=Decimal(str(adjustment))
        ))

    def stock(self, product_id: int) -> int:
        session = self.session_factory()
        try:
            return session.get(Product, product_id).quantity_available
        finally:
            session.close()

    def order(self, order_id: int) -> Order:
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            # Touch relationships while the session is open
            for item in order.items:
                _ = item.customizations
            return order
        finally:
            session.close()

    def seller_row(self, seller_id: int) -> Seller:
        session = self.session_factory()
        try:
            return session.get(Seller, seller_id)
        finally:
            session.close()

    def transactions(self, order_id: int) -> List[Transaction]:
        session = self.session_factory()
        try:
            return (
                session.query(Transaction)
                .filter(Transaction.order_id == order_id)
                .order_by(Transaction.id)
                .all()
            )
        finally:
            session.close()

    def set_order_fields(self, order_id: int, **fields):
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            for key, value in fields.items():
                setattr(order, key, value)
            session.commit()
        finally:
            session.close()


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 10, 18, 12, 0, 0))


@pytest.fixture
def seed(session_factory):
    return LedgerSeeder(session_factory)


@pytest.fixture
def gateway():
    """Real signature checks, mocked HTTP calls"""
    client = RazorpayService(
        key_id=TEST_KEY_ID,
        key_secret=TEST_KEY_SECRET,
        webhook_secret=TEST_WEBHOOK_SECRET,
        base_url="https://api.razorpay.test/v1",
    )
    client.create_order = AsyncMock(return_value={"id": "order_GW001", "status": "created"})
    client.refund_payment = AsyncMock(return_value={"id": "rfnd_GW001", "status": "processed"})
    return client


@pytest.fixture
def lifecycle(session_factory, clock):
    return OrderLifecycleService(session_factory=session_factory, pricing_engine=PricingEngine(), clock=clock)


@pytest.fixture
def settlement(session_factory, gateway, clock):
    return PaymentSettlementService(
        session_factory=session_factory,
        gateway=gateway,
        commission_engine=CommissionEngine(),
        clock=clock,
    )


@pytest.fixture
def expiry(session_factory, clock):
    return OrderExpiryService(session_factory=session_factory, clock=clock)


@pytest.fixture
def sign_checkout():
    """Signature the gateway checkout would hand back to the client"""

    def _sign(gateway_order_id: str, gateway_payment_id: str, secret: str = TEST_KEY_SECRET) -> str:
        return compute_signature(f"{gateway_order_id}|{gateway_payment_id}", secret)

    return _sign
