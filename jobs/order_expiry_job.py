"""
Order expiry job
Runs the expiry sweeper on a fixed interval, or once from the command line.

USAGE:
    python -m jobs.order_expiry_job                  # run the scheduler forever
    python -m jobs.order_expiry_job --once --ttl 30  # single sweep
"""

import argparse
import asyncio
import logging
from typing import Any, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from sqlalchemy.orm import sessionmaker
from config import Config, setup_logging
from services.order_expiry_service import OrderExpiryService

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "expire_stale_orders"


class OrderExpiryScheduler:
    """Interval scheduler for the order expiry sweeper"""

    def __init__(
        self,
        expiry_service: OrderExpiryService,
        interval_minutes: Optional[int] = None,
        ttl_minutes: Optional[int] = None,
    ):
        self.expiry_service = expiry_service
        self.interval_minutes = interval_minutes or Config.ORDER_EXPIRY_SWEEP_INTERVAL_MINUTES
        self.ttl_minutes = ttl_minutes or Config.ORDER_EXPIRY_MINUTES

        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,  # Collapse missed runs into one
                'max_instances': 1,
                'misfire_grace_time': 120,
            },
            timezone='UTC',
        )

    async def run_expiry_sweep(self) -> Dict[str, Any]:
        """One sweep; database work runs off the event loop"""
        logger.info(f"⏰ EXPIRY_JOB: Sweeping orders older than {self.ttl_minutes} minutes")
        return await asyncio.to_thread(self.expiry_service.expire_stale_orders, self.ttl_minutes)

    def setup_jobs(self):
        if self.scheduler.get_job(EXPIRY_JOB_ID):
            self.scheduler.remove_job(EXPIRY_JOB_ID)

        self.scheduler.add_job(
            self.run_expiry_sweep,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=EXPIRY_JOB_ID,
            name="Expire Stale Unpaid Orders",
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"📅 EXPIRY_JOB: Scheduled every {self.interval_minutes} minutes (TTL {self.ttl_minutes} minutes)")

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ EXPIRY_JOB: Scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 EXPIRY_JOB: Scheduler stopped")


def run_order_expiry(ttl_minutes: Optional[int] = None, session_factory: Optional[sessionmaker] = None) -> Dict[str, Any]:
    """Entry point for a single scheduled sweep"""
    return OrderExpiryService(session_factory=session_factory).expire_stale_orders(ttl_minutes)


async def _run_forever(scheduler: OrderExpiryScheduler):
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown()


def main(argv=None):
    parser = argparse.ArgumentParser(description='Expire stale unpaid prepaid orders')
    parser.add_argument('--ttl', type=int, default=Config.ORDER_EXPIRY_MINUTES, help='Order age in minutes before expiry')
    parser.add_argument('--once', action='store_true', help='Run a single sweep and exit')
    parser.add_argument('--interval', type=int, default=Config.ORDER_EXPIRY_SWEEP_INTERVAL_MINUTES,
                        help='Minutes between sweeps')
    args = parser.parse_args(argv)

    setup_logging()
    if args.once:
        results = run_order_expiry(args.ttl)
        logger.info(f"Expired {results['expired_count']} orders: {results['expired_orders']}")
        return results

    scheduler = OrderExpiryScheduler(OrderExpiryService(), interval_minutes=args.interval, ttl_minutes=args.ttl)
    asyncio.run(_run_forever(scheduler))


if __name__ == "__main__":
    main()
