"""Scheduling module for periodic execution of the batch jobs."""

from .service import SchedulerService

__all__ = [
    "SchedulerService",
]
