"""Batch job orchestration for the daily passes.

Jobs are triggered by an external scheduler (or the built-in APScheduler
daemon). A trigger must present the shared secret. Each job holds its own
non-blocking lock: a trigger that arrives while the same job is still running
is skipped, not queued. Overlaps across processes are harmless because every
pass is idempotent.
"""

import hmac
import threading
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import uuid4

from placement_guard.errors import InvalidInputError, UnauthorizedTriggerError
from placement_guard.logging import get_logger, log_context
from placement_guard.utils.timestamps import utc_now

from .models import BatchRunResult, JobRunResult, JobRunSummary

logger = get_logger(__name__, component="jobs")

CHECK_INS = "check-ins"
EXPIRY = "expiry"
PAYMENT_REMINDERS = "payment-reminders"
ALL = "all"

JOB_NAMES = (CHECK_INS, EXPIRY, PAYMENT_REMINDERS)


class BatchJobRunner:
    """
    Runs the check-in, expiry and payment-reminder passes.

    Args:
        check_ins: CheckInScheduler
        expiry: ExpiryWorkflow
        payments: PaymentLedger
        trigger_secret: Shared secret external triggers must present; when
            unset every external trigger is rejected
    """

    def __init__(self, check_ins, expiry, payments, trigger_secret: Optional[str] = None):
        self.trigger_secret = trigger_secret
        self._jobs: Dict[str, Callable[[datetime], JobRunSummary]] = {
            CHECK_INS: lambda now: _check_in_summary(check_ins.run(now)),
            EXPIRY: lambda now: _expiry_summary(expiry.run(now)),
            PAYMENT_REMINDERS: lambda now: _payment_summary(payments.send_reminders(now)),
        }
        self._locks = {name: threading.Lock() for name in JOB_NAMES}

    def trigger(self, job_name: str, secret: Optional[str], now: Optional[datetime] = None) -> BatchRunResult:
        """Entry point for external triggers.

        Raises:
            UnauthorizedTriggerError: Missing or wrong secret, or no secret configured
            InvalidInputError: Unknown job name
        """
        if not self.trigger_secret or not secret or not hmac.compare_digest(
            secret.encode("utf-8"), self.trigger_secret.encode("utf-8")
        ):
            logger.warning(
                f"Rejected trigger for job '{job_name}'",
                extra={"event": "jobs.trigger.unauthorized", "job": job_name},
            )
            raise UnauthorizedTriggerError("Invalid or missing trigger secret")
        return self.run(job_name, now)

    def run(self, job_name: str, now: Optional[datetime] = None) -> BatchRunResult:
        """Run one job, or every job in order for ``"all"``."""
        if job_name == ALL:
            names = JOB_NAMES
        elif job_name in self._jobs:
            names = (job_name,)
        else:
            raise InvalidInputError(
                f"Unknown job '{job_name}'. Must be one of: {', '.join(JOB_NAMES + (ALL,))}"
            )
        return BatchRunResult(results=[self.run_job(name, now) for name in names])

    def run_job(self, job_name: str, now: Optional[datetime] = None) -> JobRunResult:
        """
        Run a single job under its lock.

        Returns:
            JobRunResult; a job that raises is reported with ``had_errors``
            instead of propagating, so ``all`` still runs the remaining jobs
        """
        run_started_at = utc_now()
        run_id = uuid4().hex
        lock = self._locks[job_name]

        with log_context(run_id=run_id, job=job_name):
            if not lock.acquire(blocking=False):
                logger.warning(
                    f"Job '{job_name}' skipped: previous run still in progress",
                    extra={"event": "jobs.run.skipped", "reason": "lock_held"},
                )
                return JobRunResult(
                    job=job_name,
                    run_id=run_id,
                    run_started_at=run_started_at,
                    run_finished_at=utc_now(),
                    skipped=True,
                )

            try:
                logger.info(f"Job '{job_name}' started", extra={"event": "jobs.run.started"})
                try:
                    summary = self._jobs[job_name](now or utc_now())
                except Exception as e:
                    logger.error(
                        f"Job '{job_name}' failed: {e}",
                        exc_info=True,
                        extra={"event": "jobs.run.failed", "error_type": type(e).__name__},
                    )
                    return JobRunResult(
                        job=job_name,
                        run_id=run_id,
                        run_started_at=run_started_at,
                        run_finished_at=utc_now(),
                        had_errors=True,
                        error_message=str(e),
                    )

                result = JobRunResult(
                    job=job_name,
                    run_id=run_id,
                    run_started_at=run_started_at,
                    run_finished_at=utc_now(),
                    summary=summary.counters,
                    had_errors=summary.had_errors,
                )
                logger.info(
                    f"Job '{job_name}' completed",
                    extra={
                        "event": "jobs.run.completed",
                        "duration_ms": int(result.total_duration_seconds * 1000),
                        "had_errors": result.had_errors,
                        **result.summary,
                    },
                )
                return result
            finally:
                lock.release()


def _check_in_summary(result) -> JobRunSummary:
    return JobRunSummary(
        {
            "materialized": result.materialize.created,
            "due": result.dispatch.due,
            "sent": result.dispatch.sent,
            "skipped": result.dispatch.skipped,
            "failed": result.dispatch.failed,
        },
        result.materialize.errors > 0 or result.dispatch.had_errors,
    )


def _expiry_summary(result) -> JobRunSummary:
    return JobRunSummary(
        {"expiring": result.warning.expiring, "expired": result.expired},
        result.had_errors,
    )


def _payment_summary(result) -> JobRunSummary:
    return JobRunSummary(
        {
            "overdue": result.overdue,
            "sent": result.sent,
            "suppressed": result.suppressed,
            "failed": result.failed,
        },
        result.had_errors,
    )
