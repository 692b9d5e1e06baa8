"""
BrokerDesk - Scheduled jobs
- Purge of expired one-time codes (every OTP_SWEEP_MINUTES)
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import OTP_SWEEP_MINUTES

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Scheduled job runner"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    def start(self):
        """Register every job and start"""
        self.scheduler.add_job(
            self.purge_expired_otps,
            IntervalTrigger(minutes=OTP_SWEEP_MINUTES),
            id="purge_expired_otps",
            name="Purge expired OTP codes",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")

    # ==================== JOBS ====================

    async def purge_expired_otps(self):
        from services.otp import purge_expired_otps

        try:
            await purge_expired_otps()
        except Exception as e:
            logger.error(f"OTP purge failed: {str(e)}")


# Shared instance
task_scheduler = TaskScheduler()
