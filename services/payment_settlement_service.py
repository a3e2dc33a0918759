"""
Payment Settlement Service
Payment intents, gateway signature verification, idempotent settlement,
refunds and gateway webhook events.

Settlement is keyed by the gateway payment id: the completed charge row
carries it under a unique constraint, so a client confirmation and a webhook
for the same payment settle the order once.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from models import (
    Order, Transaction, OrderStatus, PaymentMethod, PaymentStatus,
    TransactionStatus, TransactionType, RefundStatus,
)
from services.commission_engine import CommissionEngine
from services.inventory_service import InventoryService
from services.razorpay_service import RazorpayAPIError, RazorpayService
from utils.atomic_transactions import atomic_transaction, read_only_session
from utils.database_locking import DatabaseLockingService
from utils.datetime_helpers import get_naive_utc_now, isoformat_or_none
from utils.decimal_precision import MonetaryDecimal
from utils.exceptions import (
    Conflict, NotFound, OrderMismatch, PolicyRejected,
    RefundReconciliationRequired, SignatureInvalid, UpstreamFailure, ValidationFailed,
)
from utils.helpers import generate_receipt, generate_transaction_id
from utils.order_state_validator import OrderStateValidator

logger = logging.getLogger(__name__)

MANUAL_PROVIDER = "manual"


def fail_pending_charges(session: Session, order_id: int, now, gateway_order_id: Optional[str] = None) -> int:
    """Close an order's open payment intents as failed; returns how many were closed"""
    pending = session.execute(
        select(Transaction).where(
            Transaction.order_id == order_id,
            Transaction.transaction_type == TransactionType.CHARGE.value,
            Transaction.payment_status == TransactionStatus.PENDING.value,
        )
    ).scalars().all()
    closed = 0
    for txn in pending:
        if gateway_order_id is None or txn.gateway_order_id == gateway_order_id:
            txn.payment_status = TransactionStatus.FAILED.value
            txn.updated_at = now
            closed += 1
    return closed


class PaymentSettlementService:
    """Orchestrates payment intents, settlement and refunds"""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        gateway: Optional[RazorpayService] = None,
        commission_engine: Optional[CommissionEngine] = None,
        clock: Optional[Callable] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway or RazorpayService()
        self.commission_engine = commission_engine or CommissionEngine()
        self.clock = clock or get_naive_utc_now

    # ------------------------------------------------------------------
    # Payment intent
    # ------------------------------------------------------------------

    async def create_payment_intent(
        self,
        order_id: int,
        amount=None,
        currency: Optional[str] = None,
        method=PaymentMethod.ONLINE,
    ) -> Dict[str, Any]:
        """
        Create (or reuse) a gateway order for a pending prepaid order.

        The charged amount is always the ledger total; a client amount is only
        compared and logged.

        Raises:
            PolicyRejected: Cash on delivery
            ValidationFailed: Unknown payment method
            NotFound: Order missing
            Conflict: Order no longer pending
            UpstreamFailure: Gateway call failed
        """
        try:
            method = method if isinstance(method, PaymentMethod) else PaymentMethod(method)
        except ValueError:
            raise ValidationFailed(f"Unsupported payment method: {method}")
        if method == PaymentMethod.COD:
            logger.warning(f"🚫 COD_REJECTED: Payment intent for order {order_id} refused, prepaid methods only")
            raise PolicyRejected("Cash on delivery is not available; please pay online")

        with read_only_session(self.session_factory) as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            if order.payment_method == PaymentMethod.COD.value:
                raise PolicyRejected("Order was placed as cash on delivery; online payment is not available")
            if order.status != OrderStatus.PENDING.value:
                raise Conflict(f"Order {order.order_number} is {order.status}, payment not allowed")

            total_amount = order.total_amount
            order_number = order.order_number
            order_currency = order.currency

            if amount is not None and MonetaryDecimal.round2(amount) != total_amount:
                logger.warning(
                    f"⚠️ AMOUNT_MISMATCH: Client sent {amount} for order {order_number}, "
                    f"charging ledger total {total_amount}"
                )
            if currency and currency.upper() != order_currency:
                logger.warning(f"⚠️ CURRENCY_MISMATCH: Client sent {currency} for order {order_number}")

            existing = self._pending_intent(session, order)
            if existing is not None:
                logger.info(f"♻️ INTENT_REUSED: Order {order_number} gateway order {order.gateway_order_id}")
                return self._intent_result(order, existing, reused=True)

        amount_minor = MonetaryDecimal.to_minor_units(total_amount)
        try:
            gateway_order = await self.gateway.create_order(
                amount_minor=amount_minor,
                currency=order_currency,
                receipt=generate_receipt(order_number),
                notes={"order_id": str(order_id), "order_number": order_number},
            )
        except RazorpayAPIError as e:
            logger.error(f"❌ INTENT_GATEWAY_FAILED: Order {order_number}: {e}")
            raise UpstreamFailure(f"Payment gateway unavailable: {e}") from e

        gateway_order_id = gateway_order["id"]
        now = self.clock()
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id)
            if order.status != OrderStatus.PENDING.value:
                raise Conflict(f"Order {order.order_number} became {order.status} during payment setup")

            # A previous intent for another gateway order is superseded
            fail_pending_charges(session, order.id, now)

            order.gateway_order_id = gateway_order_id
            order.payment_status = PaymentStatus.PENDING.value
            order.updated_at = now
            txn = Transaction(
                transaction_id=generate_transaction_id(),
                order_id=order.id,
                payer_id=order.buyer_id,
                payee_id=order.seller_id,
                transaction_type=TransactionType.CHARGE.value,
                amount=order.total_amount,
                currency=order.currency,
                payment_method=order.payment_method,
                payment_provider=RazorpayService.PROVIDER,
                payment_status=TransactionStatus.PENDING.value,
                gateway_order_id=gateway_order_id,
                created_at=now,
                updated_at=now,
            )
            session.add(txn)
            session.flush()
            result = self._intent_result(order, txn, reused=False)

        logger.info(f"💳 INTENT_CREATED: Order {order_number} gateway order {gateway_order_id} ({amount_minor} minor)")
        return result

    def _intent_result(self, order: Order, txn: Transaction, reused: bool) -> Dict[str, Any]:
        return {
            "success": True,
            "order_id": order.id,
            "order_number": order.order_number,
            "gateway_order_id": order.gateway_order_id,
            "amount": MonetaryDecimal.to_minor_units(order.total_amount),
            "currency": order.currency,
            "key_id": self.gateway.key_id,
            "transaction_id": txn.transaction_id,
            "reused": reused,
        }

    @staticmethod
    def _charges(session: Session, order_id: int, status: TransactionStatus):
        return session.execute(
            select(Transaction).where(
                Transaction.order_id == order_id,
                Transaction.transaction_type == TransactionType.CHARGE.value,
                Transaction.payment_status == status.value,
            ).order_by(Transaction.id)
        ).scalars().all()

    def _pending_intent(self, session: Session, order: Order) -> Optional[Transaction]:
        if not order.gateway_order_id:
            return None
        for txn in self._charges(session, order.id, TransactionStatus.PENDING):
            if txn.gateway_order_id == order.gateway_order_id:
                return txn
        return None

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def verify_payment(
        self,
        order_id: int,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
    ) -> Dict[str, Any]:
        """
        Verify a checkout signature and settle the order.

        Raises:
            SignatureInvalid: Signature does not match (no state change)
            OrderMismatch: Gateway order id differs from the stored one
            Conflict: Order expired, cancelled or settled by another payment
        """
        if not gateway_order_id or not gateway_payment_id or not signature:
            raise ValidationFailed("gateway_order_id, gateway_payment_id and signature are required")

        if not self.gateway.verify_payment_signature(gateway_order_id, gateway_payment_id, signature):
            logger.critical(
                f"🚨 SIGNATURE_INVALID: Payment verification failed for order {order_id} "
                f"(gateway order {gateway_order_id}, payment {gateway_payment_id})"
            )
            raise SignatureInvalid("Payment signature verification failed")

        return self._settle(
            order_id,
            reference=gateway_payment_id,
            provider=RazorpayService.PROVIDER,
            source="client_verify",
            gateway_order_id=gateway_order_id,
        )

    def confirm_payment(self, order_id: int, transaction_id: str) -> Dict[str, Any]:
        """Settle an order paid out of band (manual/admin confirmation)"""
        if not transaction_id:
            raise ValidationFailed("transaction_id is required")
        return self._settle(
            order_id,
            reference=transaction_id,
            provider=MANUAL_PROVIDER,
            source="manual_confirm",
        )

    @staticmethod
    def _completed_charge_for(session: Session, reference: str) -> Optional[Transaction]:
        return session.execute(
            select(Transaction).where(
                Transaction.payment_gateway_reference == reference,
                Transaction.transaction_type == TransactionType.CHARGE.value,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _issued_gateway_order(session: Session, order_id: int, gateway_order_id: str) -> bool:
        """True if the gateway order was created for this order, even if a newer intent replaced it"""
        return session.execute(
            select(Transaction.id).where(
                Transaction.order_id == order_id,
                Transaction.transaction_type == TransactionType.CHARGE.value,
                Transaction.gateway_order_id == gateway_order_id,
            ).limit(1)
        ).first() is not None

    @staticmethod
    def _already_settled(order: Order, charge: Transaction, source: str) -> Dict[str, Any]:
        logger.info(
            f"♻️ ALREADY_SETTLED: Order {order.order_number} payment {charge.payment_gateway_reference} "
            f"({source}), no effects applied"
        )
        return {
            "success": True,
            "already_settled": True,
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "payment_status": order.payment_status,
            "transaction_id": charge.transaction_id,
        }

    def _settle(
        self,
        order_id: int,
        reference: str,
        provider: str,
        source: str,
        gateway_order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply a captured payment to a pending order exactly once"""
        now = self.clock()
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id)
            if (
                gateway_order_id is not None
                and order.gateway_order_id != gateway_order_id
                and not self._issued_gateway_order(session, order.id, gateway_order_id)
            ):
                logger.warning(
                    f"⚠️ ORDER_MISMATCH: Order {order.order_number} expects gateway order "
                    f"{order.gateway_order_id}, got {gateway_order_id}"
                )
                raise OrderMismatch("Payment does not belong to this order")

            existing = self._completed_charge_for(session, reference)
            if existing is not None:
                if existing.order_id != order.id:
                    raise Conflict(f"Payment {reference} already settled another order")
                return self._already_settled(order, existing, source)

            if order.status != OrderStatus.PENDING.value:
                if order.status in (OrderStatus.EXPIRED.value, OrderStatus.CANCELLED.value):
                    logger.critical(
                        f"🚨 LATE_PAYMENT: Payment {reference} arrived for {order.status} order "
                        f"{order.order_number} ({source}); operator refund required"
                    )
                    raise Conflict(f"Order {order.order_number} is {order.status}; payment cannot be applied")
                raise Conflict(f"Order {order.order_number} already {order.status}; duplicate settlement refused")

            charge = None
            for txn in self._charges(session, order.id, TransactionStatus.PENDING):
                if gateway_order_id is None or txn.gateway_order_id == gateway_order_id:
                    charge = txn
            if charge is None:
                charge = Transaction(
                    transaction_id=generate_transaction_id(),
                    order_id=order.id,
                    payer_id=order.buyer_id,
                    payee_id=order.seller_id,
                    transaction_type=TransactionType.CHARGE.value,
                    amount=order.total_amount,
                    currency=order.currency,
                    payment_method=order.payment_method,
                    gateway_order_id=gateway_order_id or order.gateway_order_id,
                    created_at=now,
                )
                session.add(charge)
            charge.payment_provider = provider
            charge.payment_status = TransactionStatus.COMPLETED.value
            charge.payment_gateway_reference = reference
            charge.completed_at = now
            charge.updated_at = now

            # Claim the payment reference first; a concurrent settlement loses here
            try:
                with session.begin_nested():
                    session.flush()
            except IntegrityError:
                session.rollback()
                winner = session.execute(
                    select(Transaction).where(
                        Transaction.payment_gateway_reference == reference,
                        Transaction.transaction_type == TransactionType.CHARGE.value,
                    )
                ).scalar_one()
                if winner.order_id != order_id:
                    logger.critical(
                        f"🚨 PAYMENT_REUSED: Payment {reference} ({source}) is already settled on order "
                        f"{winner.order_id}, refused for order {order_id}"
                    )
                    raise Conflict(f"Payment {reference} already settled another order")
                logger.info(f"♻️ SETTLEMENT_RACE: Payment {reference} claimed concurrently for order {order_id}")
                return self._already_settled(session.get(Order, order_id), winner, source)

            # Intents for other gateway orders can no longer be paid
            fail_pending_charges(session, order.id, now)

            seller = DatabaseLockingService.lock_seller(session, order.seller_id)
            seller.completed_order_count = (seller.completed_order_count or 0) + 1
            completed_after = seller.completed_order_count
            split = self.commission_engine.settle(order.total_amount, completed_after)

            charge.commission_rate = split.commission_rate
            charge.platform_fee_amount = split.platform_fee_amount
            charge.seller_earning_amount = split.seller_earning_amount

            OrderStateValidator.validate_and_transition(order, OrderStatus.CONFIRMED, now)
            order.payment_status = PaymentStatus.PAID.value
            order.commission_rate = split.commission_rate
            order.commission_amount = split.platform_fee_amount
            order.seller_earning_amount = split.seller_earning_amount

            # Orders created before reservation existed take stock now
            InventoryService.reserve(session, order)

            earned = self.commission_engine.milestone_badges(completed_after)
            badges, new_badges = self.commission_engine.merge_badges(seller.badges, earned)
            if new_badges:
                seller.badges = badges
            seller.updated_at = now

            session.flush()
            result = {
                "success": True,
                "already_settled": False,
                "order_id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "payment_status": order.payment_status,
                "transaction_id": charge.transaction_id,
                "commission_rate": split.commission_rate,
                "platform_fee_amount": split.platform_fee_amount,
                "seller_earning_amount": split.seller_earning_amount,
                "completed_orders": completed_after,
                "new_badges": new_badges,
            }

        logger.info(
            f"✅ PAYMENT_SETTLED: Order {result['order_number']} via {source} payment {reference} "
            f"rate={result['commission_rate']} fee={result['platform_fee_amount']} "
            f"seller_earning={result['seller_earning_amount']}"
        )
        if new_badges:
            logger.info(f"🏅 BADGES_AWARDED: Seller {order.seller_id} earned {', '.join(new_badges)}")
        return result

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_webhook_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a verified gateway webhook event.

        payment.captured settles through the same path as verify_payment.
        payment.failed marks the payment failed and leaves status and stock alone.
        """
        event_type = event.get("event")
        entity = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
        gateway_order_id = entity.get("order_id")
        gateway_payment_id = entity.get("id")

        if event_type not in ("payment.captured", "payment.failed"):
            logger.info(f"ℹ️ WEBHOOK_IGNORED: Unhandled event type {event_type}")
            return {"success": True, "status": "ignored", "event": event_type}
        if not gateway_order_id or not gateway_payment_id:
            raise ValidationFailed(f"Webhook {event_type} missing payment order_id or id")

        if event_type == "payment.captured":
            with read_only_session(self.session_factory) as session:
                order_id = session.execute(
                    select(Order.id).where(Order.gateway_order_id == gateway_order_id)
                ).scalar_one_or_none()
                if order_id is None:
                    # Gateway order superseded by a newer intent
                    order_id = session.execute(
                        select(Transaction.order_id).where(
                            Transaction.gateway_order_id == gateway_order_id,
                            Transaction.transaction_type == TransactionType.CHARGE.value,
                        ).limit(1)
                    ).scalar_one_or_none()
            if order_id is None:
                logger.critical(
                    f"🚨 WEBHOOK_UNKNOWN_ORDER: Captured payment {gateway_payment_id} for unknown gateway order "
                    f"{gateway_order_id}; operator review required"
                )
                return {"success": True, "status": "ignored", "event": event_type}
            try:
                result = self._settle(
                    order_id,
                    reference=gateway_payment_id,
                    provider=RazorpayService.PROVIDER,
                    source="webhook",
                    gateway_order_id=gateway_order_id,
                )
            except Conflict as e:
                # Acknowledged so the gateway stops retrying; LATE_PAYMENT alerts carry the follow-up
                logger.warning(f"⚠️ WEBHOOK_CONFLICT: {e.message}")
                return {"success": False, "status": "conflict", "event": event_type, "message": e.message}
            result["status"] = "already_settled" if result["already_settled"] else "settled"
            result["event"] = event_type
            return result

        return self._mark_payment_failed(gateway_order_id, gateway_payment_id, entity.get("error_description"))

    def _mark_payment_failed(self, gateway_order_id: str, gateway_payment_id: str, reason: Optional[str]) -> Dict[str, Any]:
        now = self.clock()
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order_by_gateway_id(session, gateway_order_id)
            if order is None:
                logger.warning(f"⚠️ WEBHOOK_UNKNOWN_ORDER: No order for gateway order {gateway_order_id}")
                return {"success": True, "status": "ignored", "event": "payment.failed"}
            if order.payment_status == PaymentStatus.PAID.value or order.status != OrderStatus.PENDING.value:
                logger.info(f"ℹ️ PAYMENT_FAILED_IGNORED: Order {order.order_number} is {order.status}/{order.payment_status}")
                return {"success": True, "status": "ignored", "event": "payment.failed"}

            order.payment_status = PaymentStatus.FAILED.value
            order.updated_at = now
            fail_pending_charges(session, order.id, now, gateway_order_id)
            order_number = order.order_number

        logger.warning(f"❌ PAYMENT_FAILED: Order {order_number} payment {gateway_payment_id}: {reason or 'no reason given'}")
        return {"success": True, "status": "payment_failed", "event": "payment.failed", "order_number": order_number}

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def process_refund(self, order_id: int, amount, reason: str, restock: bool = False) -> Dict[str, Any]:
        """
        Refund a settled order through the gateway, then record it.

        An order takes one refund (full or partial); it then moves to refunded,
        which is terminal. The refund is claimed on the charge under the order
        lock before the gateway is called, so a concurrent refund is refused
        with Conflict instead of reaching the gateway twice. If the gateway
        fails the claim is released. If the ledger write fails after the
        gateway refunded the buyer, the claim stays in place and
        RefundReconciliationRequired is raised for operators.
        """
        try:
            amount = MonetaryDecimal.round2(amount)
        except ValueError:
            raise ValidationFailed(f"Invalid refund amount: {amount!r}")
        if amount <= 0:
            raise ValidationFailed("Refund amount must be positive")

        claim = self._claim_refund(order_id, amount)
        order_number = claim["order_number"]
        charge_id = claim["charge_id"]

        if claim["provider"] == RazorpayService.PROVIDER:
            try:
                gateway_refund = await self.gateway.refund_payment(
                    claim["payment_reference"],
                    MonetaryDecimal.to_minor_units(amount),
                    notes={"order_number": order_number, "reason": (reason or "")[:250]},
                )
            except RazorpayAPIError as e:
                logger.error(f"❌ REFUND_GATEWAY_FAILED: Order {order_number}: {e}")
                self._release_refund_claim(charge_id, claim["previous_refund_status"])
                raise UpstreamFailure(f"Payment gateway refund failed: {e}") from e
            refund_reference = gateway_refund["id"]
        else:
            refund_reference = f"{MANUAL_PROVIDER}-{generate_transaction_id()}"
            logger.info(f"💸 MANUAL_REFUND: Order {order_number} settled out of band; refund {refund_reference} to be paid manually")

        try:
            result = self._record_refund(order_id, charge_id, amount, reason, refund_reference, restock)
        except Exception as e:
            logger.critical(
                f"🚨 REFUND_RECONCILIATION: Gateway refund {refund_reference} of {amount} for order "
                f"{order_number} succeeded but the ledger write failed: {e}"
            )
            raise RefundReconciliationRequired(
                f"Refund {refund_reference} issued but not recorded for order {order_number}",
                order_id=order_id,
                gateway_refund_id=refund_reference,
                amount=amount,
            ) from e

        logger.info(f"💸 REFUND_PROCESSED: Order {order_number} refund {refund_reference} amount {amount}")
        return result

    @staticmethod
    def _refundable(charge: Transaction) -> Decimal:
        return charge.amount - (charge.refund_amount or Decimal("0"))

    def _claim_refund(self, order_id: int, amount: Decimal) -> Dict[str, Any]:
        """Check and mark the latest completed charge as being refunded, under the order lock"""
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id)
            charges = self._charges(session, order.id, TransactionStatus.COMPLETED)
            if not charges:
                raise NotFound(f"No completed payment for order {order.order_number}")
            charge = charges[-1]
            if charge.refund_status == RefundStatus.PENDING.value:
                raise Conflict(f"A refund is already in progress for order {order.order_number}")
            is_valid, _ = OrderStateValidator.validate_transition(
                OrderStatus(order.status), OrderStatus.REFUNDED, order.order_number
            )
            if not is_valid:
                raise Conflict(f"Refund not allowed for status {order.status}")
            remaining = self._refundable(charge)
            if amount > remaining:
                raise ValidationFailed(f"Refund {amount} exceeds refundable {remaining}")

            claim = {
                "order_number": order.order_number,
                "charge_id": charge.id,
                "provider": charge.payment_provider,
                "payment_reference": charge.payment_gateway_reference,
                "previous_refund_status": charge.refund_status,
            }
            charge.refund_status = RefundStatus.PENDING.value
            charge.updated_at = self.clock()

        logger.info(f"🔒 REFUND_CLAIMED: Order {claim['order_number']} charge {claim['charge_id']} amount {amount}")
        return claim

    def _release_refund_claim(self, charge_id: int, previous_status: str) -> None:
        with atomic_transaction(self.session_factory) as session:
            charge = session.get(Transaction, charge_id)
            if charge is not None and charge.refund_status == RefundStatus.PENDING.value:
                charge.refund_status = previous_status
                charge.updated_at = self.clock()

    def _record_refund(self, order_id: int, charge_id: int, amount: Decimal, reason: str,
                       refund_reference: str, restock: bool) -> Dict[str, Any]:
        now = self.clock()
        with atomic_transaction(self.session_factory) as session:
            order = DatabaseLockingService.lock_order(session, order_id)
            charge = session.get(Transaction, charge_id)
            if charge.refund_status != RefundStatus.PENDING.value:
                raise Conflict(f"Refund claim on order {order.order_number} was released")
            if amount > self._refundable(charge):
                raise Conflict(f"Refund {amount} exceeds refundable {self._refundable(charge)}")

            refunded_total = (charge.refund_amount or Decimal("0")) + amount
            charge.refund_amount = refunded_total
            charge.refund_status = (
                RefundStatus.FULL.value if refunded_total >= charge.amount else RefundStatus.PARTIAL.value
            )
            charge.refund_reason = reason
            charge.updated_at = now

            refund = Transaction(
                transaction_id=generate_transaction_id(),
                order_id=order.id,
                payer_id=order.seller_id,
                payee_id=order.buyer_id,
                transaction_type=TransactionType.REFUND.value,
                amount=amount,
                currency=order.currency,
                payment_method=order.payment_method,
                payment_provider=charge.payment_provider,
                payment_status=TransactionStatus.REFUNDED.value,
                gateway_order_id=order.gateway_order_id,
                payment_gateway_reference=refund_reference,
                refund_status=charge.refund_status,
                refund_amount=amount,
                refund_reason=reason,
                created_at=now,
                updated_at=now,
                completed_at=now,
            )
            session.add(refund)

            OrderStateValidator.validate_and_transition(order, OrderStatus.REFUNDED, now)
            order.payment_status = PaymentStatus.REFUNDED.value
            restocked = InventoryService.release(session, order) if restock else False

            session.flush()
            return {
                "success": True,
                "order_id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "payment_status": order.payment_status,
                "refund_transaction_id": refund.transaction_id,
                "refund_reference": refund_reference,
                "refund_amount": amount,
                "refund_status": charge.refund_status,
                "restocked": restocked,
            }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_payment_status(self, order_id: int) -> Dict[str, Any]:
        """Order payment status with its latest transaction"""
        with read_only_session(self.session_factory) as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            latest = session.execute(
                select(Transaction)
                .where(Transaction.order_id == order.id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            refunded = session.execute(
                select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                    Transaction.order_id == order.id,
                    Transaction.transaction_type == TransactionType.REFUND.value,
                )
            ).scalar_one()

            return {
                "order_id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "payment_status": order.payment_status,
                "total_amount": order.total_amount,
                "refunded_amount": MonetaryDecimal.round2(refunded),
                "transaction": None if latest is None else {
                    "transaction_id": latest.transaction_id,
                    "transaction_type": latest.transaction_type,
                    "amount": latest.amount,
                    "payment_status": latest.payment_status,
                    "payment_provider": latest.payment_provider,
                    "payment_gateway_reference": latest.payment_gateway_reference,
                    "created_at": isoformat_or_none(latest.created_at),
                },
            }
