import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from livetv.config import settings
from livetv.errors import LiveTVError
from livetv.services.sync_service import sync_all_users


logger = logging.getLogger(__name__)

JOB_ID = "livetv_sync"


class LiveTVScheduler:
    """Scheduler for periodic Live TV syncs"""

    def __init__(self, cron_expression: str | None = None):
        self.scheduler: AsyncIOScheduler | None = None
        self.cron_expression = cron_expression or settings.livetv_sync_cron

    async def _sync_job(self) -> None:
        """Background job that runs one sync cycle"""
        logger.info("Scheduled Live TV sync triggered")
        try:
            result = await sync_all_users()
        except LiveTVError as e:
            logger.error("Scheduled Live TV sync failed: %s", e, exc_info=True)
            return
        except Exception as e:
            logger.error("Unexpected error in scheduled Live TV sync: %s", e, exc_info=True)
            return

        if result.get("status") == "skipped":
            logger.info("Scheduled sync skipped: %s", result.get("message"))
        else:
            logger.info("Scheduled sync processed %s user(s)", result.get("users_processed", 0))

    def start(self) -> None:
        """Start the scheduler with the sync job"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        try:
            trigger = CronTrigger.from_crontab(self.cron_expression, timezone="UTC")
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", self.cron_expression, exc)
            raise

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._sync_job,
            trigger=trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.livetv_sync_misfire_grace_sec,
        )

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(
            "Scheduler started. Next sync: %s",
            next_time.isoformat() if next_time else "unknown"
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled sync time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None


livetv_scheduler = LiveTVScheduler()
