from __future__ import annotations

from datetime import UTC, datetime

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from inbound_guard.utils.logger import get_logger

from .job import CheckClientIpJob

_log = get_logger(__name__)

JOB_ID = "check_client_ip"


class EnforcementScheduler:
    """Runs the client IP check on a fixed interval on one dedicated worker.

    A single-thread executor with ``max_instances=1`` keeps runs serial and off
    the threads serving the dashboard; the job's own lock covers manual runs.
    """

    def __init__(
        self,
        job: CheckClientIpJob,
        *,
        interval_seconds: int = 30,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self.job = job
        self.interval_seconds = interval_seconds
        self.shutdown_timeout = shutdown_timeout
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
            timezone=UTC,
        )

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            self.job.run,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=UTC),
            id=JOB_ID,
            name="Check client IP limits",
            replace_existing=True,
        )
        _log.info(
            "Scheduled client IP check",
            event="guard.scheduler.started",
            interval_seconds=self.interval_seconds,
        )

    def trigger_now(self) -> None:
        """Queue an immediate run on the scheduler's worker."""
        self.scheduler.add_job(
            self.job.run,
            trigger=DateTrigger(run_date=datetime.now(UTC), timezone=UTC),
            id=f"{JOB_ID}_manual",
            replace_existing=True,
        )

    def stop(self) -> bool:
        """Stop scheduling and wait for an in-flight run to finish.

        Returns False if the run was still going after ``shutdown_timeout``.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        idle = self.job.wait_idle(self.shutdown_timeout)
        if idle:
            _log.info("Client IP check scheduler stopped", event="guard.scheduler.stopped")
        else:
            _log.warning(
                "Client IP check still running at shutdown",
                event="guard.scheduler.stop_timeout",
                timeout=self.shutdown_timeout,
            )
        return idle
