"""Configuration management for the marketplace order service"""

import os
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "")
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "7"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "15"))
    DB_LOCK_TIMEOUT_SECONDS = int(os.getenv("DB_LOCK_TIMEOUT_SECONDS", "10"))

    # Pricing (all amounts in ORDER_CURRENCY)
    ORDER_CURRENCY = os.getenv("ORDER_CURRENCY", "USD")
    TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.10"))
    PLATFORM_FEE_RATE = Decimal(os.getenv("PLATFORM_FEE_RATE", "0.02"))  # buyer-side fee on subtotal
    FLAT_SHIPPING_COST = Decimal(os.getenv("FLAT_SHIPPING_COST", "5.00"))

    # Seller commission tiers: (minimum completed orders, rate)
    COMMISSION_TIERS = (
        (1, Decimal(os.getenv("COMMISSION_RATE_TIER_1", "0"))),
        (11, Decimal(os.getenv("COMMISSION_RATE_TIER_2", "0.03"))),
        (51, Decimal(os.getenv("COMMISSION_RATE_TIER_3", "0.07"))),
    )

    # Expiry of unpaid prepaid orders
    ORDER_EXPIRY_MINUTES = int(os.getenv("ORDER_EXPIRY_MINUTES", "30"))
    ORDER_EXPIRY_SWEEP_INTERVAL_MINUTES = int(
        os.getenv("ORDER_EXPIRY_SWEEP_INTERVAL_MINUTES", "5")
    )
    ORDER_EXPIRY_BATCH_SIZE = int(os.getenv("ORDER_EXPIRY_BATCH_SIZE", "100"))

    # Razorpay gateway
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
    RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
    RAZORPAY_TIMEOUT_SECONDS = int(os.getenv("RAZORPAY_TIMEOUT_SECONDS", "30"))

    # Webhook server
    WEBHOOK_HOST = os.getenv("WEBHOOK_HOST", "0.0.0.0")
    WEBHOOK_PORT = int(os.getenv("PORT", os.getenv("WEBHOOK_PORT", "5000")))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def validate_gateway_config(cls) -> bool:
        """Check that the gateway credentials needed for online payments are set"""
        missing = [
            name
            for name in ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET")
            if not getattr(cls, name)
        ]
        if missing:
            logger.warning(f"⚠️ Razorpay configuration incomplete, missing: {', '.join(missing)}")
            return False
        return True


def setup_logging(level: str = None):
    """Configure root logging for entry points"""
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL), logging.INFO),
        format=Config.LOG_FORMAT,
    )
