"""Batch job orchestration for the daily passes."""

from .models import BatchRunResult, JobRunResult
from .runner import ALL, CHECK_INS, EXPIRY, JOB_NAMES, PAYMENT_REMINDERS, BatchJobRunner

__all__ = [
    "BatchJobRunner",
    "BatchRunResult",
    "JobRunResult",
    "JOB_NAMES",
    "ALL",
    "CHECK_INS",
    "EXPIRY",
    "PAYMENT_REMINDERS",
]
