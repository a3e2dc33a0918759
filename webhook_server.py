"""
FastAPI Webhook Server for the marketplace order service
Receives payment gateway webhooks, exposes health checks and runs the order
expiry scheduler inside the worker's event loop.
"""
import os
from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))

import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from config import Config, setup_logging
from database import get_session_factory, test_connection
from handlers.razorpay_webhook import router as razorpay_router
from jobs.order_expiry_job import OrderExpiryScheduler
from services.order_expiry_service import OrderExpiryService
from services.payment_settlement_service import PaymentSettlementService
from services.razorpay_service import RazorpayService

logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[sessionmaker] = None,
    gateway: Optional[RazorpayService] = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """Build the webhook application with its services wired in"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🔧 Worker {os.getpid()} starting...")
        Config.validate_gateway_config()
        scheduler = None
        if run_scheduler:
            scheduler = OrderExpiryScheduler(OrderExpiryService(session_factory=app.state.session_factory))
            scheduler.start()
        yield
        if scheduler is not None:
            scheduler.shutdown()
        logger.info(f"🔄 Worker {os.getpid()} shutting down...")

    app = FastAPI(
        title="Marketplace Order Webhook Server",
        description="Payment gateway webhooks and order expiry",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory or get_session_factory()
    app.state.settlement_service = PaymentSettlementService(
        session_factory=app.state.session_factory,
        gateway=gateway or RazorpayService(),
    )
    app.include_router(razorpay_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for the deployment platform"""
        if not test_connection(app.state.session_factory.kw["bind"]):
            return JSONResponse(content={"status": "degraded", "database": "unreachable"}, status_code=503)
        return {"status": "ok", "service": "marketplace-orders", "database": "ok"}

    return app


def main():
    import uvicorn

    setup_logging()
    uvicorn.run(create_app(), host=Config.WEBHOOK_HOST, port=Config.WEBHOOK_PORT)


if __name__ == "__main__":
    main()
