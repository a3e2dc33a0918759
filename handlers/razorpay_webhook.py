"""
Razorpay Webhook Handler

Flow: raw body -> signature check -> JSON parse -> settlement service.
payment.captured settles the order through the same idempotent path as client
verification; payment.failed only marks the payment as failed.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Header, Request

from services.payment_settlement_service import PaymentSettlementService
from utils.exceptions import OrderServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_settlement_service(request: Request) -> PaymentSettlementService:
    """Settlement service installed on app.state by webhook_server.create_app"""
    service = getattr(request.app.state, "settlement_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Settlement service not configured")
    return service


@router.post("/payments/razorpay/webhook")
async def razorpay_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
    service: PaymentSettlementService = Depends(get_settlement_service),
):
    """Gateway payment notifications"""
    body = await request.body()
    _verify_razorpay_signature(service, body, signature)
    event = _parse_razorpay_event(body)

    try:
        result = await asyncio.to_thread(service.handle_webhook_event, event)
    except OrderServiceError as e:
        logger.error(f"❌ RAZORPAY_WEBHOOK: {e.code} for event {event.get('event')}: {e.message}")
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
    except Exception as e:
        logger.error(f"❌ RAZORPAY_WEBHOOK: Unexpected error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info(f"📥 RAZORPAY_WEBHOOK: {event.get('event')} -> {result.get('status')}")
    return {"status": "ok", "result": result.get("status")}


def _verify_razorpay_signature(service: PaymentSettlementService, body: bytes, signature: Optional[str]):
    if not signature:
        logger.critical("🚨 RAZORPAY_WEBHOOK: Missing X-Razorpay-Signature header")
        raise HTTPException(status_code=401, detail="Missing signature")
    if not service.gateway.verify_webhook_signature(body, signature):
        logger.critical("🚨 RAZORPAY_WEBHOOK: Invalid webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")


def _parse_razorpay_event(body: bytes) -> Dict[str, Any]:
    if not body:
        raise HTTPException(status_code=400, detail="Empty request body")
    try:
        event = json.loads(body)
    except ValueError as e:
        logger.error(f"❌ RAZORPAY_JSON: Invalid JSON format: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON format")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event payload")
    return event
