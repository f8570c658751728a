"""APScheduler wiring for the background maintenance sweep."""

from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ...config.models import HealthConfig
from ...utils.logger import get_logger
from .health_monitor import ContextHealthMonitor

logger = get_logger(__name__)

SWEEP_JOB_ID = "context_health_maintenance"
INITIAL_JOB_ID = "context_health_initial_sweep"


class MaintenanceScheduler:
    """Runs `run_background_maintenance` on a fixed interval.

    Must be started from a running event loop.
    """

    def __init__(self, health_monitor: ContextHealthMonitor, config: HealthConfig | None = None) -> None:
        self.health_monitor = health_monitor
        self.config = config or health_monitor.config
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> bool:
        """Schedule the sweep and an initial delayed run.

        Returns:
            False when background maintenance is disabled or already running
        """
        if not self.config.background_maintenance:
            logger.info("Background maintenance disabled")
            return False
        if self.running:
            return False

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.health_monitor.run_background_maintenance,
            IntervalTrigger(hours=self.config.maintenance_interval_hours),
            id=SWEEP_JOB_ID,
            name="Context Health Maintenance",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.health_monitor.run_background_maintenance,
            DateTrigger(
                run_date=datetime.now() + timedelta(seconds=self.config.initial_delay_seconds)
            ),
            id=INITIAL_JOB_ID,
            name="Initial Context Health Maintenance",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            "Maintenance scheduler started",
            extra={
                "interval_hours": self.config.maintenance_interval_hours,
                "initial_delay_seconds": self.config.initial_delay_seconds,
            },
        )
        return True

    def stop(self) -> None:
        """Stop the scheduler. Calling it again is a no-op."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Maintenance scheduler stopped")

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
