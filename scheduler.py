import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Owns the background scheduler.

    Recurring templates are projected on startup, nightly and hourly. The
    same scheduler also executes one-off dashboard refresh jobs.
    """

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def project_recurring(self, source: str = "manual") -> int:
        with session_scope() as session:
            count = RecurringEngine(session).project_all()
        logger.info(f"projection_run: source={source} occurrences_posted={count}")
        return count

    def start(self) -> None:
        self.project_recurring("startup")

        self.scheduler.add_job(
            self.project_recurring,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="projection_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self.project_recurring,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="projection_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 projection and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
