import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from coach import CoachSession
from config import get_settings
from database import session_scope
from periods import current_month_range
from services import AnalyticsService, local_today


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Recomputes this month's snapshot on an interval and feeds the coach panel."""

    def __init__(self, coach_session: CoachSession) -> None:
        settings = get_settings()
        self.coach_session = coach_session
        self.refresh_minutes = settings.refresh_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> Optional[str]:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            today = local_today()
            snapshot = AnalyticsService(session).snapshot(
                current_month_range(today), today=today
            )
        changed = self.coach_session.observe(snapshot)
        logger.info(
            f"scheduler_run: source={source} signature={snapshot.signature[:12]} "
            f"changed={changed} unread={self.coach_session.unread}"
        )
        return snapshot.signature

    def start(self) -> None:
        if self.refresh_minutes <= 0:
            logger.info("Scheduler disabled (refresh_minutes=0)")
            return

        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.refresh_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="analysis_refresh",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with {self.refresh_minutes} minute refresh")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
