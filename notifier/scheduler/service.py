"""Scheduler service for periodic queue maintenance."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notifier.config.models import MaintenanceConfig
from notifier.logging import get_logger
from notifier.persistence import PersistenceError
from notifier.queue import JobQueueEngine

logger = get_logger(__name__, component="scheduler")

RECOVERY_JOB_ID = "queue-recover-stalled"
CLEANUP_JOB_ID = "queue-cleanup"
CLEANUP_INTERVAL_SECONDS = 3600


class MaintenanceScheduler:
    """
    Wraps APScheduler to run queue maintenance in the background.

    Two jobs are registered: stalled-job recovery every ``interval`` and
    removal of finished jobs older than ``cleanup_after`` once an hour.
    """

    def __init__(self, engine: JobQueueEngine, maintenance_config: Optional[MaintenanceConfig] = None):
        """
        Initialize the maintenance scheduler.

        Args:
            engine: Queue engine to maintain
            maintenance_config: Intervals (defaults to MaintenanceConfig())
        """
        self.engine = engine
        self.config = maintenance_config or MaintenanceConfig()

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # Prevent overlapping runs
                "coalesce": True,
                "misfire_grace_time": self.config.interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the maintenance jobs and start the scheduler.

        Recovery runs immediately on startup so jobs left active by a
        previous process are picked up again.
        """
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.run_recovery,
            trigger=IntervalTrigger(seconds=self.config.interval_seconds, timezone=timezone.utc),
            id=RECOVERY_JOB_ID,
            name="Stalled job recovery",
            replace_existing=True,
            next_run_time=next_run,
        )
        self.scheduler.add_job(
            func=self.run_cleanup,
            trigger=IntervalTrigger(seconds=CLEANUP_INTERVAL_SECONDS, timezone=timezone.utc),
            id=CLEANUP_JOB_ID,
            name="Finished job cleanup",
            replace_existing=True,
        )
        self.scheduler.start()

        logger.info(
            f"Maintenance scheduler started with interval: {self.config.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.config.interval_seconds,
                "cleanup_after_seconds": self.config.cleanup_after_seconds,
            },
        )

    def run_recovery(self) -> None:
        """Recover stalled jobs; storage errors are logged and retried on the next run."""
        try:
            recovery = self.engine.recover_stalled()
        except PersistenceError as e:
            logger.error(
                f"Stalled job recovery failed: {e}",
                extra={"event": "scheduler.recovery.failed"},
            )
            return
        if recovery.requeued or recovery.failed:
            logger.info(
                f"Recovered {len(recovery.requeued)} stalled job(s), failed {len(recovery.failed)}",
                extra={
                    "event": "scheduler.recovery.completed",
                    "requeued": len(recovery.requeued),
                    "failed": len(recovery.failed),
                },
            )

    def run_cleanup(self) -> None:
        """Remove finished jobs older than ``cleanup_after``."""
        try:
            self.engine.cleanup(older_than=timedelta(seconds=self.config.cleanup_after_seconds))
        except PersistenceError as e:
            logger.error(
                f"Job cleanup failed: {e}",
                extra={"event": "scheduler.cleanup.failed"},
            )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: If True, wait for running maintenance jobs to complete
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        """Next scheduled stalled-job recovery, or None if not scheduled."""
        job = self.scheduler.get_job(RECOVERY_JOB_ID)
        return job.next_run_time if job else None
