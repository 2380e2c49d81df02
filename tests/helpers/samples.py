"""In-memory domain objects for rendering and payload tests.

None of these touch the database; they mirror the rows the ``parties`` and
``introduced`` fixtures create.
"""

from datetime import datetime, timezone
from decimal import Decimal

from placement_guard.domain.models import (
    Candidate,
    CheckIn,
    CircumventionFlag,
    DetectionMethod,
    Employer,
    Introduction,
    IntroductionStatus,
    Placement,
    ResponseType,
    RiskLevel,
)

SAMPLE_NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
INTRODUCED_AT = datetime(2024, 12, 16, 9, 30, tzinfo=timezone.utc)


def sample_candidate(**overrides) -> Candidate:
    fields = {"id": "cand-jane", "name": "Jane Doe", "email": "jane@example.com"}
    fields.update(overrides)
    return Candidate(**fields)


def sample_employer(**overrides) -> Employer:
    fields = {
        "id": "emp-acme",
        "company_name": "Acme Corp",
        "contact_name": "Riley Manager",
        "contact_email": "hiring@acme.example.com",
        "service_agreement_signed_at": datetime(2024, 12, 1, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return Employer(**fields)


def sample_introduction(**overrides) -> Introduction:
    fields = {
        "id": "intro-1",
        "employer_id": "emp-acme",
        "candidate_id": "cand-jane",
        "job_title": "Staff Engineer",
        "status": IntroductionStatus.INTRODUCED,
        "introduced_at": INTRODUCED_AT,
        "protection_starts_at": datetime(2024, 12, 10, tzinfo=timezone.utc),
        "protection_ends_at": datetime(2025, 12, 10, tzinfo=timezone.utc),
        "created_at": datetime(2024, 12, 10, tzinfo=timezone.utc),
        "updated_at": INTRODUCED_AT,
    }
    fields.update(overrides)
    return Introduction(**fields)


def sample_check_in(**overrides) -> CheckIn:
    fields = {
        "id": "ci-1",
        "introduction_id": "intro-1",
        "check_in_number": 1,
        "scheduled_for": datetime(2025, 1, 15, tzinfo=timezone.utc),
        "created_at": INTRODUCED_AT,
    }
    fields.update(overrides)
    return CheckIn(**fields)


def answered_check_in(text: str = "Started at Acme last week!", **overrides) -> CheckIn:
    fields = {
        "sent_at": datetime(2025, 1, 15, tzinfo=timezone.utc),
        "responded_at": datetime(2025, 1, 20, 8, 0, tzinfo=timezone.utc),
        "response_type": ResponseType.FREE_TEXT,
        "response_raw": text,
        "risk_level": RiskLevel.HIGH,
        "risk_reason": "Candidate reports a hire at the introduced company",
        "flagged_for_review": True,
    }
    fields.update(overrides)
    return sample_check_in(**fields)


def sample_flag(**overrides) -> CircumventionFlag:
    fields = {
        "id": "5f0c2b9e-1d2a-4c3b-9e8f-00000000ab12",
        "introduction_id": "intro-1",
        "check_in_id": "ci-1",
        "detection_method": DetectionMethod.CHECK_IN_RESPONSE,
        "evidence": {"company_mentioned": "Acme", "status": "hired_there"},
        "detected_at": SAMPLE_NOW,
        "estimated_salary": Decimal("120000"),
        "fee_percentage": Decimal("20"),
        "estimated_fee_owed": Decimal("24000.00"),
        "created_at": SAMPLE_NOW,
        "updated_at": SAMPLE_NOW,
    }
    fields.update(overrides)
    return CircumventionFlag(**fields)


def sample_placement(**overrides) -> Placement:
    fields = {
        "id": "plc-1",
        "employer_id": "emp-acme",
        "candidate_id": "cand-jane",
        "job_title": "Staff Engineer",
        "company_name": "Acme Corp",
        "start_date": datetime(2024, 11, 1, tzinfo=timezone.utc),
        "upfront_amount": Decimal("12000"),
        "remaining_amount": Decimal("12000"),
    }
    fields.update(overrides)
    return Placement(**fields)
