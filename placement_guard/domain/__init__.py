"""Domain models for the placement protection engine."""

from .models import (
    AuditEntry,
    AuditSubject,
    Candidate,
    CandidateResponse,
    CheckIn,
    CheckInStatus,
    CircumventionFlag,
    Confidence,
    DetectionMethod,
    Employer,
    EmploymentType,
    FlagStatus,
    Introduction,
    IntroductionStatus,
    PaymentKind,
    PaymentStatus,
    Placement,
    ResponseType,
    RiskLevel,
)

__all__ = [
    "AuditEntry",
    "AuditSubject",
    "Candidate",
    "CandidateResponse",
    "CheckIn",
    "CheckInStatus",
    "CircumventionFlag",
    "Confidence",
    "DetectionMethod",
    "Employer",
    "EmploymentType",
    "FlagStatus",
    "Introduction",
    "IntroductionStatus",
    "PaymentKind",
    "PaymentStatus",
    "Placement",
    "ResponseType",
    "RiskLevel",
]
