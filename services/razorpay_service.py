"""Razorpay Payment Gateway API Service"""

import asyncio
import aiohttp
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional, Union
from config import Config

logger = logging.getLogger(__name__)


class RazorpayAPIError(Exception):
    """Custom exception for Razorpay API errors"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


def compute_signature(message: Union[str, bytes], secret: str) -> str:
    """Hex HMAC-SHA256 of message under secret"""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _signature_matches(message: Union[str, bytes], signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    # Use secure comparison
    return hmac.compare_digest(compute_signature(message, secret), signature)


class RazorpayService:
    """Client for Razorpay orders, refunds and signature checks"""

    PROVIDER = "razorpay"

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ):
        self.key_id = key_id if key_id is not None else Config.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else Config.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret if webhook_secret is not None else Config.RAZORPAY_WEBHOOK_SECRET
        self.base_url = (base_url or Config.RAZORPAY_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or Config.RAZORPAY_TIMEOUT_SECONDS)

        if not self.key_id or not self.key_secret:
            logger.warning("Razorpay API credentials not configured - service will not function")

    def _get_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.key_id, self.key_secret)

    def _get_headers(self) -> Dict[str, str]:
        return {
            'accept': 'application/json',
            'content-type': 'application/json',
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, headers=self._get_headers(), auth=self._get_auth(), json=payload) as response:
                    if response.status in (200, 201):
                        return await response.json()
                    error_text = await response.text()
                    logger.error(f"Razorpay API error: HTTP {response.status} on {path}: {error_text}")
                    raise RazorpayAPIError(f"Razorpay returned HTTP {response.status}", status=response.status)
        except aiohttp.ClientError as e:
            logger.error(f"Network error connecting to Razorpay: {e}")
            raise RazorpayAPIError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Timeout calling Razorpay {path}")
            raise RazorpayAPIError("Razorpay request timed out") from e

    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a gateway order the client will pay against.

        Args:
            amount_minor: Amount in minor units (cents/paise)
            currency: ISO currency code
            receipt: Our order number
            notes: Free-form metadata echoed back in webhooks

        Returns:
            Gateway order payload; 'id' is the gateway order id
        """
        data = await self._post("/orders", {
            "amount": int(amount_minor),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })
        if not data.get("id"):
            raise RazorpayAPIError("Razorpay order response missing id")
        logger.info(f"Razorpay order created: {data['id']} for receipt {receipt} ({amount_minor} {currency})")
        return data

    async def refund_payment(
        self,
        payment_id: str,
        amount_minor: int,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Refund (part of) a captured payment; 'id' in the result is the refund id"""
        data = await self._post(f"/payments/{payment_id}/refund", {
            "amount": int(amount_minor),
            "notes": notes or {},
        })
        if not data.get("id"):
            raise RazorpayAPIError("Razorpay refund response missing id")
        logger.info(f"Razorpay refund {data['id']} issued for payment {payment_id} ({amount_minor})")
        return data

    def verify_payment_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Checkout signature: HMAC-SHA256 of 'order_id|payment_id' with the key secret"""
        return _signature_matches(f"{gateway_order_id}|{gateway_payment_id}", signature, self.key_secret)

    def verify_webhook_signature(self, body: Union[str, bytes], signature: Optional[str]) -> bool:
        """Webhook signature: HMAC-SHA256 of the raw request body with the webhook secret"""
        return _signature_matches(body, signature, self.webhook_secret)
