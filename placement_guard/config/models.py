"""Configuration schema models using Pydantic.

Every section has defaults, so an empty ``config.yaml`` yields the production
behaviour: a 12-month protection window, check-ins at 30/60/90/180/365 days,
7-day introduction tokens and 14-day check-in tokens.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    JSON = "json"
    KEY_VALUE = "key-value"


class Milestone(BaseModel):
    """One entry of the check-in schedule: send check-in ``number`` after ``days_after`` days."""

    number: int = Field(..., ge=1, description="Check-in number stored on the row")
    days_after: int = Field(..., ge=1, description="Days after introduced_at")


DEFAULT_SCHEDULE = [
    Milestone(number=1, days_after=30),
    Milestone(number=2, days_after=60),
    Milestone(number=3, days_after=90),
    Milestone(number=4, days_after=180),
    Milestone(number=5, days_after=365),
]


class ProtectionConfig(BaseModel):
    """Protection window, token lifetimes and expiry warning window."""

    period_months: int = Field(12, ge=1, le=60, description="Length of the protection window")
    introduction_token_days: int = Field(7, ge=1, le=90)
    check_in_token_days: int = Field(14, ge=1, le=90)
    final_check_in_number: int = Field(
        6, ge=1, description="Reserved check-in number for the final check-in"
    )
    warning_window_start_days: int = Field(
        6, ge=0, description="Advance warning covers protection ending from now + start days"
    )
    warning_window_end_days: int = Field(7, ge=1, description="... up to now + end days")

    @model_validator(mode="after")
    def validate_warning_window(self):
        if self.warning_window_start_days >= self.warning_window_end_days:
            raise ValueError(
                "warning_window_start_days must be smaller than warning_window_end_days"
            )
        return self


class CheckInConfig(BaseModel):
    """Check-in schedule and dispatch settings."""

    schedule: List[Milestone] = Field(default_factory=lambda: list(DEFAULT_SCHEDULE))
    dispatch_concurrency: int = Field(
        5, ge=1, le=50, description="Check-ins sent in parallel during dispatch"
    )

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: List[Milestone]) -> List[Milestone]:
        if not v:
            raise ValueError("schedule must contain at least one milestone")

        numbers = [m.number for m in v]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Duplicate milestone numbers in schedule: {numbers}")

        ordered = sorted(v, key=lambda m: m.number)
        offsets = [m.days_after for m in ordered]
        if offsets != sorted(set(offsets)):
            raise ValueError("Milestone days_after must strictly increase with the number")
        return ordered


class ClassifierConfig(BaseModel):
    """Settings for the language-model reply classifier."""

    model: str = Field("gpt-4o-mini", min_length=1)
    temperature: float = Field(0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(500, ge=50, le=4000)
    timeout_seconds: float = Field(30.0, gt=0, le=300)
    batch_concurrency: int = Field(5, ge=1, le=20)


class PaymentsConfig(BaseModel):
    """Overdue-payment reminder settings."""

    remaining_due_days: int = Field(
        30, ge=1, le=365, description="Days after upfront payment the remaining amount is due"
    )
    reminder_interval_days: int = Field(
        7, ge=1, le=90, description="Minimum days between reminders for one placement"
    )
    batch_size: int = Field(5, ge=1, le=50)


class EmailConfig(BaseModel):
    """Email delivery settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    max_retries: int = Field(
        2, ge=0, le=10, description="Retries for a failed send inside one call"
    )
    retry_backoff_multiplier: float = Field(2.0, ge=1.0, le=5.0)
    retry_initial_delay: float = Field(2.0, ge=0.0, le=60.0, description="Seconds")


class LoggingConfig(BaseModel):
    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(LogFormat.KEY_VALUE, description="json or key-value")
    environment: str = Field("local", min_length=1, description="Environment label on every record")

    model_config = {"use_enum_values": True}


class SchedulerConfig(BaseModel):
    """Daemon-mode scheduling of the batch jobs."""

    interval: str = Field("24h", description="How often each batch job runs")
    run_on_start: bool = Field(True, description="Run every job once at daemon start")
    check_ins: bool = True
    expiry: bool = True
    payment_reminders: bool = True

    interval_seconds: Optional[int] = None

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        try:
            seconds = parse_duration(v)
            validate_duration_range(
                seconds, min_seconds=3600, max_seconds=7 * 86400, label="Scheduler interval"
            )
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        return v

    @model_validator(mode="after")
    def compute_interval_seconds(self):
        self.interval_seconds = parse_duration(self.interval)
        return self

    def enabled_jobs(self) -> List[str]:
        jobs = []
        if self.check_ins:
            jobs.append("check-ins")
        if self.expiry:
            jobs.append("expiry")
        if self.payment_reminders:
            jobs.append("payment-reminders")
        return jobs


class AppConfig(BaseModel):
    """Root configuration object."""

    protection: ProtectionConfig = Field(default_factory=ProtectionConfig)
    check_ins: CheckInConfig = Field(default_factory=CheckInConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @model_validator(mode="after")
    def validate_final_check_in_number(self):
        scheduled = {m.number for m in self.check_ins.schedule}
        if self.protection.final_check_in_number in scheduled:
            raise ValueError(
                f"protection.final_check_in_number ({self.protection.final_check_in_number}) "
                "collides with a scheduled milestone number"
            )
        return self
