"""
SiteGate Scheduler. Timer only, no business logic.

Jobs:
1. Daily scoring (02:00): features + permit risk for active projects
2. Weekly recommendations (Monday 09:00)
3. Recommendation expiry (00:00 daily)
4. Pending event drain (every few minutes): retries unprocessed events
"""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sitegate.config import settings
from sitegate.services.batch import BatchProcessor

logger = structlog.get_logger(__name__)


class SiteGateScheduler:
    def __init__(self, batch: BatchProcessor, scheduler: AsyncIOScheduler | None = None):
        self.batch = batch
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    def register_jobs(self) -> None:
        self.scheduler.add_job(
            self.batch.run_daily_scoring,
            CronTrigger(hour=settings.daily_scoring_hour, minute=0),
            id="daily_scoring",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.batch.run_weekly_recommendations,
            CronTrigger(
                day_of_week=settings.weekly_recommendation_day,
                hour=settings.weekly_recommendation_hour,
                minute=0,
            ),
            id="weekly_recommendations",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.batch.expire_stale_recommendations,
            CronTrigger(hour=settings.recommendation_expiry_hour, minute=0),
            id="expire_recommendations",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.batch.process_pending_events,
            IntervalTrigger(minutes=settings.event_drain_interval_minutes),
            kwargs={"limit": settings.event_drain_batch_size},
            id="drain_events",
            max_instances=1,
            replace_existing=True,
        )

    def start(self) -> None:
        """Register and start all scheduled jobs."""
        self.register_jobs()
        self.scheduler.start()
        logger.info("scheduler_started", jobs=[job.id for job in self.scheduler.get_jobs()])

    def stop(self) -> None:
        self.scheduler.shutdown(wait=True)
        logger.info("scheduler_stopped")
