"""Scheduler service for periodic batch job execution."""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from placement_guard.logging import get_logger

logger = get_logger(__name__, component="scheduler")

JOB_ID_PREFIX = "placement-guard-"


class SchedulerService:
    """
    Wraps APScheduler to trigger each batch job at the configured interval.

    Uses BackgroundScheduler to run jobs in a separate thread while
    allowing the main thread to handle signals and coordinate shutdown.
    """

    def __init__(
        self,
        job_callable: Callable[[str], object],
        job_names: Sequence[str],
        interval_seconds: int,
        run_on_start: bool = True,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            job_callable: Called with a job name on each scheduled run (e.g., runner.run_job)
            job_names: Jobs to schedule
            interval_seconds: Interval between runs of each job in seconds
            run_on_start: Run every job immediately after startup
            shutdown_event: Optional event to set on shutdown for coordination
        """
        self.job_callable = job_callable
        self.job_names = list(job_names)
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Start the scheduler and register one interval job per batch job.

        With ``run_on_start`` the first runs execute immediately after startup.
        """
        next_run = datetime.now(timezone.utc) if self.run_on_start else None
        for name in self.job_names:
            kwargs = {"next_run_time": next_run} if next_run is not None else {}
            self.scheduler.add_job(
                func=self.job_callable,
                args=[name],
                trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
                id=f"{JOB_ID_PREFIX}{name}",
                name=f"Placement Guard {name}",
                replace_existing=True,
                **kwargs,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "jobs": self.job_names,
                "run_on_start": self.run_on_start,
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self, job_name: Optional[str] = None) -> None:
        """
        Run one job, or every scheduled job, synchronously in the current thread.
        """
        names = [job_name] if job_name else self.job_names
        logger.info(
            "Triggering immediate run",
            extra={"event": "scheduler.trigger_now", "jobs": names},
        )
        for name in names:
            self.job_callable(name)

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_times(self) -> Dict[str, Optional[datetime]]:
        """Next scheduled run per job name (None when not scheduled)."""
        times = {}
        for name in self.job_names:
            job = self.scheduler.get_job(f"{JOB_ID_PREFIX}{name}")
            times[name] = job.next_run_time if job else None
        return times
