"""Core domain models for introductions, check-ins, flags and placements.

This module defines the data structures used throughout the engine:
- Introduction: the protected employer/candidate relationship
- CheckIn: one status probe sent to the candidate during protection
- CircumventionFlag: an open investigation into a suspected direct hire
- Placement: the payment subset of a confirmed placement
- Employer / Candidate: directory rows used to address emails
- AuditEntry: one append-only note in a record's history

Repositories convert ORM rows into these models; services never handle ORM
objects directly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class IntroductionStatus(str, Enum):
    """Lifecycle of an introduction."""

    PROFILE_VIEWED = "PROFILE_VIEWED"
    INTRO_REQUESTED = "INTRO_REQUESTED"
    INTRODUCED = "INTRODUCED"
    CANDIDATE_DECLINED = "CANDIDATE_DECLINED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (IntroductionStatus.CANDIDATE_DECLINED, IntroductionStatus.EXPIRED)


class CandidateResponse(str, Enum):
    """Candidate's answer to an introduction request."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    QUESTIONS = "QUESTIONS"


class RiskLevel(str, Enum):
    """Bounded likelihood that a reply indicates circumvention."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    CLEAR = "CLEAR"

    @property
    def needs_review(self) -> bool:
        return self in (RiskLevel.HIGH, RiskLevel.MEDIUM)


class CheckInStatus(str, Enum):
    """Employment situation reported (or extracted) from a check-in reply."""

    HIRED_THERE = "hired_there"
    HIRED_ELSEWHERE = "hired_elsewhere"
    INTERVIEWING = "interviewing"
    OFFER = "offer"
    REJECTED = "rejected"
    WITHDREW = "withdrew"
    STILL_LOOKING = "still_looking"
    NO_RESPONSE = "no_response"
    UNCLEAR = "unclear"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EmploymentType(str, Enum):
    FULL_TIME = "full_time"
    CONTRACTOR = "contractor"
    PART_TIME = "part_time"
    UNKNOWN = "unknown"


class ResponseType(str, Enum):
    """How a check-in response reached the engine."""

    CLICKED_BUTTON = "clicked_button"
    FREE_TEXT = "free_text"
    FINAL_ANSWER = "final_answer"
    ADMIN = "admin"


class FlagStatus(str, Enum):
    """Circumvention flag states.

    OPEN and INVESTIGATING are working states; the other three are terminal
    and reached exactly once.
    """

    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    CONFIRMED = "CONFIRMED"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    WROTE_OFF = "WROTE_OFF"

    @property
    def is_resolved(self) -> bool:
        return self in (FlagStatus.CONFIRMED, FlagStatus.FALSE_POSITIVE, FlagStatus.WROTE_OFF)


class DetectionMethod(str, Enum):
    CHECK_IN_RESPONSE = "check_in_response"
    EMAIL_REPLY_PARSING = "email_reply_parsing"
    FINAL_CHECK_IN = "final_check_in"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    UPFRONT_PAID = "UPFRONT_PAID"
    FULLY_PAID = "FULLY_PAID"
    FAILED = "FAILED"


class PaymentKind(str, Enum):
    """Which half of a two-part placement invoice a payment or reminder concerns."""

    UPFRONT = "upfront"
    REMAINING = "remaining"


def _to_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class _TimestampedModel(BaseModel):
    """Base model that normalizes every datetime field to aware UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def ensure_utc(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return _to_utc(v)
        return v


class Employer(_TimestampedModel):
    """Employer directory row (profile storage itself lives elsewhere)."""

    id: str
    company_name: str
    contact_name: Optional[str] = None
    contact_email: str
    service_agreement_signed_at: Optional[datetime] = None

    @property
    def has_service_agreement(self) -> bool:
        return self.service_agreement_signed_at is not None


class Candidate(_TimestampedModel):
    """Candidate directory row."""

    id: str
    name: str
    email: str

    @property
    def first_name(self) -> str:
        return self.name.split(" ")[0] if self.name else ""


class Introduction(_TimestampedModel):
    """Protected relationship between one employer and one candidate.

    ``protection_starts_at`` and ``protection_ends_at`` are fixed at the first
    profile view; ``protection_ends_at`` alone gates the expiry workflow.
    """

    id: str
    employer_id: str
    candidate_id: str
    job_id: Optional[str] = None
    job_title: Optional[str] = None

    status: IntroductionStatus = IntroductionStatus.PROFILE_VIEWED
    candidate_response: CandidateResponse = CandidateResponse.PENDING
    candidate_message: Optional[str] = None

    profile_viewed_at: Optional[datetime] = None
    intro_requested_at: Optional[datetime] = None
    candidate_responded_at: Optional[datetime] = None
    introduced_at: Optional[datetime] = None
    expiry_warning_sent_at: Optional[datetime] = None

    protection_starts_at: datetime
    protection_ends_at: datetime

    response_token: Optional[str] = None
    response_token_expiry: Optional[datetime] = None

    profile_views: int = Field(1, ge=0)
    resume_downloads: int = Field(0, ge=0)

    created_at: datetime
    updated_at: datetime

    @property
    def is_request_pending(self) -> bool:
        return (
            self.status == IntroductionStatus.INTRO_REQUESTED
            and self.candidate_response == CandidateResponse.PENDING
        )


class CheckIn(_TimestampedModel):
    """One scheduled (1-5) or final status probe for an introduction."""

    id: str
    introduction_id: str
    check_in_number: int = Field(..., ge=1)
    scheduled_for: datetime

    sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    response_type: Optional[ResponseType] = None
    response_raw: Optional[str] = None
    response_parsed: Optional[Dict[str, Any]] = None

    risk_level: Optional[RiskLevel] = None
    risk_reason: Optional[str] = None
    flagged_for_review: bool = False

    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None

    response_token: Optional[str] = None
    response_token_expiry: Optional[datetime] = None

    created_at: datetime


class CircumventionFlag(_TimestampedModel):
    """Investigation record for a suspected direct hire."""

    id: str
    introduction_id: str
    check_in_id: Optional[str] = None
    detection_method: DetectionMethod
    evidence: Dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime

    estimated_salary: Optional[Decimal] = None
    fee_percentage: Optional[Decimal] = None
    estimated_fee_owed: Optional[Decimal] = None

    status: FlagStatus = FlagStatus.OPEN
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    resolution_notes: Optional[str] = None

    invoice_sent_at: Optional[datetime] = None
    invoice_amount: Optional[Decimal] = None
    invoice_paid_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime


class Placement(_TimestampedModel):
    """Payment-relevant subset of a confirmed placement."""

    id: str
    employer_id: str
    candidate_id: str
    job_title: str
    company_name: str
    start_date: datetime

    upfront_amount: Decimal = Decimal("0")
    upfront_paid_at: Optional[datetime] = None
    remaining_amount: Decimal = Decimal("0")
    remaining_paid_at: Optional[datetime] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    last_reminder_sent_at: Optional[datetime] = None


class AuditEntry(_TimestampedModel):
    """One append-only note in the history of an introduction, check-in or flag."""

    id: int
    subject_type: str
    subject_id: str
    occurred_at: datetime
    actor: str
    text: str


class AuditSubject(str, Enum):
    INTRODUCTION = "introduction"
    CHECK_IN = "check_in"
    FLAG = "flag"
    PLACEMENT = "placement"
