"""Data models for batch job execution tracking."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class JobRunResult:
    """
    Outcome of one batch job run.

    Attributes:
        job: Job name ("check-ins", "expiry" or "payment-reminders")
        run_id: Identifier shared by every log record of the run
        run_started_at: UTC timestamp when the run began
        run_finished_at: UTC timestamp when the run completed
        total_duration_seconds: Wall time of the run
        summary: Job-specific counters
        had_errors: Whether any row or step failed
        skipped: Whether the run was skipped because the job was already running
        error_message: Set when the job itself raised
    """

    job: str
    run_id: str
    run_started_at: datetime
    run_finished_at: datetime
    total_duration_seconds: float = 0.0
    summary: Dict[str, Any] = field(default_factory=dict)
    had_errors: bool = False
    skipped: bool = False
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.total_duration_seconds == 0.0:
            delta = self.run_finished_at - self.run_started_at
            self.total_duration_seconds = delta.total_seconds()


@dataclass
class BatchRunResult:
    """Results of every job started by one trigger."""

    results: List[JobRunResult] = field(default_factory=list)

    @property
    def had_errors(self) -> bool:
        return any(r.had_errors for r in self.results)

    @property
    def skipped(self) -> bool:
        return bool(self.results) and all(r.skipped for r in self.results)


@dataclass
class JobRunSummary:
    """Counters reported by one job plus its error flag."""

    counters: Dict[str, int]
    had_errors: bool = False
