"""
Order Service Exceptions
Error taxonomy shared by the order lifecycle, settlement and expiry services
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class OrderServiceError(Exception):
    """Base error for order and payment operations"""

    code = "internal_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationFailed(OrderServiceError):
    """Malformed input, caller's fault"""
    code = "validation_failed"
    http_status = 400


class NotFound(OrderServiceError):
    """Order, product or transaction missing"""
    code = "not_found"
    http_status = 404


class Conflict(OrderServiceError):
    """Insufficient stock, invalid state transition or duplicate settlement"""
    code = "conflict"
    http_status = 409


class OrderMismatch(Conflict):
    """Payment payload refers to a different gateway order than the one stored"""
    code = "order_mismatch"


class SignatureInvalid(OrderServiceError):
    """Gateway signature did not verify"""
    code = "signature_invalid"
    http_status = 401


class PolicyRejected(OrderServiceError):
    """Business rule refusal, e.g. cash on delivery at the payment step"""
    code = "policy_rejected"
    http_status = 422


class UpstreamFailure(OrderServiceError):
    """Payment gateway call failed"""
    code = "upstream_failure"
    http_status = 502
    retryable = True


class InternalError(OrderServiceError):
    """Unexpected ledger store failure"""

    def to_dict(self) -> Dict[str, Any]:
        # Store detail stays in the logs
        return {
            "success": False,
            "error": self.code,
            "message": "Internal error",
            "retryable": self.retryable,
        }


class RefundReconciliationRequired(InternalError):
    """Gateway refunded the buyer but the ledger write failed"""

    code = "refund_reconciliation_required"

    def __init__(self, message: str, order_id: int, gateway_refund_id: str, amount):
        super().__init__(
            message,
            details={"order_id": order_id, "gateway_refund_id": gateway_refund_id, "amount": str(amount)},
        )
        self.order_id = order_id
        self.gateway_refund_id = gateway_refund_id
        self.amount = amount
