import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import JobReport, local_today, run_daily_jobs


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def run_jobs(
        self, source: str = "manual", today: Optional[date] = None
    ) -> list[JobReport]:
        today = today or local_today()
        logger.info(f"scheduler_run: source={source} date={today}")
        with session_scope() as session:
            reports = run_daily_jobs(session, today)
        for report in reports:
            logger.info(
                f"scheduler_run: source={source} job={report.job} "
                f"materialized={len(report.materialized)} failed={len(report.failed)}"
            )
        return reports

    def _run_job(self, source: str) -> None:
        try:
            self.run_jobs(source)
        except Exception:
            logger.exception(f"scheduler_run: source={source} aborted")

    def start(self) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler disabled by settings")
            return

        self._run_job("startup")

        trigger = CronTrigger(
            hour=self.settings.scheduler_hour, minute=self.settings.scheduler_minute
        )
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily"],
            id="ledger_daily",
            replace_existing=True,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="ledger_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily "
            f"{self.settings.scheduler_hour:02d}:{self.settings.scheduler_minute:02d}"
            " and hourly safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
