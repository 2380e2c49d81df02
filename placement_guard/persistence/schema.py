"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the database schema and provides
conversion methods between ORM models and domain models.

Timestamps are stored as fixed-width ISO 8601 UTC strings, so string comparison
in SQL matches chronological order. Money is stored as decimal strings.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text as sql_text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from placement_guard.domain.models import (
    AuditEntry,
    Candidate,
    CheckIn,
    CircumventionFlag,
    Employer,
    Introduction,
    Placement,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class EmployerModel(Base):
    """ORM model for employers table (directory subset only)."""

    __tablename__ = "employers"

    id = Column(String(64), primary_key=True, nullable=False)
    company_name = Column(String(255), nullable=False)
    contact_name = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=False)
    service_agreement_signed_at = Column(String(50), nullable=True)

    def to_domain(self) -> Employer:
        return Employer(
            id=self.id,
            company_name=self.company_name,
            contact_name=self.contact_name,
            contact_email=self.contact_email,
            service_agreement_signed_at=_parse_datetime(self.service_agreement_signed_at),
        )

    @classmethod
    def from_domain(cls, employer: Employer) -> "EmployerModel":
        return cls(
            id=employer.id,
            company_name=employer.company_name,
            contact_name=employer.contact_name,
            contact_email=employer.contact_email,
            service_agreement_signed_at=_format_datetime(employer.service_agreement_signed_at),
        )


class CandidateModel(Base):
    """ORM model for candidates table (directory subset only)."""

    __tablename__ = "candidates"

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)

    def to_domain(self) -> Candidate:
        return Candidate(id=self.id, name=self.name, email=self.email)

    @classmethod
    def from_domain(cls, candidate: Candidate) -> "CandidateModel":
        return cls(id=candidate.id, name=candidate.name, email=candidate.email)


class IntroductionModel(Base):
    """ORM model for introductions table.

    One row per (employer, candidate) pair. Tokens that were used are kept in
    ``introduction_consumed_tokens`` so a repeated submission can be told
    apart from an unknown token.
    """

    __tablename__ = "introductions"

    id = Column(String(64), primary_key=True, nullable=False)
    employer_id = Column(String(64), ForeignKey("employers.id"), nullable=False)
    candidate_id = Column(String(64), ForeignKey("candidates.id"), nullable=False)
    job_id = Column(String(64), nullable=True)
    job_title = Column(String(255), nullable=True)

    status = Column(String(32), nullable=False)
    candidate_response = Column(String(32), nullable=False)
    candidate_message = Column(Text, nullable=True)

    profile_viewed_at = Column(String(50), nullable=True)
    intro_requested_at = Column(String(50), nullable=True)
    candidate_responded_at = Column(String(50), nullable=True)
    introduced_at = Column(String(50), nullable=True)
    expiry_warning_sent_at = Column(String(50), nullable=True)

    protection_starts_at = Column(String(50), nullable=False)
    protection_ends_at = Column(String(50), nullable=False)

    response_token = Column(String(128), nullable=True, unique=True)
    response_token_expiry = Column(String(50), nullable=True)

    profile_views = Column(Integer, nullable=False, default=1)
    resume_downloads = Column(Integer, nullable=False, default=0)

    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("employer_id", "candidate_id", name="uq_introductions_pair"),
        Index("idx_introductions_status", "status"),
        Index("idx_introductions_protection_ends", "protection_ends_at"),
    )

    def to_domain(self) -> Introduction:
        return Introduction(
            id=self.id,
            employer_id=self.employer_id,
            candidate_id=self.candidate_id,
            job_id=self.job_id,
            job_title=self.job_title,
            status=self.status,
            candidate_response=self.candidate_response,
            candidate_message=self.candidate_message,
            profile_viewed_at=_parse_datetime(self.profile_viewed_at),
            intro_requested_at=_parse_datetime(self.intro_requested_at),
            candidate_responded_at=_parse_datetime(self.candidate_responded_at),
            introduced_at=_parse_datetime(self.introduced_at),
            expiry_warning_sent_at=_parse_datetime(self.expiry_warning_sent_at),
            protection_starts_at=_parse_datetime(self.protection_starts_at),
            protection_ends_at=_parse_datetime(self.protection_ends_at),
            response_token=self.response_token,
            response_token_expiry=_parse_datetime(self.response_token_expiry),
            profile_views=self.profile_views,
            resume_downloads=self.resume_downloads,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, introduction: Introduction) -> "IntroductionModel":
        return cls(
            id=introduction.id,
            employer_id=introduction.employer_id,
            candidate_id=introduction.candidate_id,
            job_id=introduction.job_id,
            job_title=introduction.job_title,
            status=_enum_value(introduction.status),
            candidate_response=_enum_value(introduction.candidate_response),
            candidate_message=introduction.candidate_message,
            profile_viewed_at=_format_datetime(introduction.profile_viewed_at),
            intro_requested_at=_format_datetime(introduction.intro_requested_at),
            candidate_responded_at=_format_datetime(introduction.candidate_responded_at),
            introduced_at=_format_datetime(introduction.introduced_at),
            expiry_warning_sent_at=_format_datetime(introduction.expiry_warning_sent_at),
            protection_starts_at=_format_datetime(introduction.protection_starts_at),
            protection_ends_at=_format_datetime(introduction.protection_ends_at),
            response_token=introduction.response_token,
            response_token_expiry=_format_datetime(introduction.response_token_expiry),
            profile_views=introduction.profile_views,
            resume_downloads=introduction.resume_downloads,
            created_at=_format_datetime(introduction.created_at),
            updated_at=_format_datetime(introduction.updated_at),
        )


class ConsumedIntroductionTokenModel(Base):
    """Every introduction response token that has been used, kept forever."""

    __tablename__ = "introduction_consumed_tokens"

    token = Column(String(128), primary_key=True, nullable=False)
    introduction_id = Column(String(64), ForeignKey("introductions.id"), nullable=False)
    consumed_at = Column(String(50), nullable=False)


class CheckInModel(Base):
    """ORM model for check_ins table.

    The (introduction_id, check_in_number) unique constraint is what makes
    materialization idempotent.
    """

    __tablename__ = "check_ins"

    id = Column(String(64), primary_key=True, nullable=False)
    introduction_id = Column(String(64), ForeignKey("introductions.id"), nullable=False)
    check_in_number = Column(Integer, nullable=False)
    scheduled_for = Column(String(50), nullable=False)

    sent_at = Column(String(50), nullable=True)
    responded_at = Column(String(50), nullable=True)

    response_type = Column(String(32), nullable=True)
    response_raw = Column(Text, nullable=True)
    response_parsed = Column(Text, nullable=True)

    risk_level = Column(String(16), nullable=True)
    risk_reason = Column(Text, nullable=True)
    flagged_for_review = Column(Boolean, nullable=False, default=False)

    reviewed_at = Column(String(50), nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    review_notes = Column(Text, nullable=True)

    response_token = Column(String(128), nullable=True, unique=True)
    response_token_expiry = Column(String(50), nullable=True)
    consumed_response_token = Column(String(128), nullable=True)

    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("introduction_id", "check_in_number", name="uq_check_ins_number"),
        Index("idx_check_ins_due", "sent_at", "scheduled_for"),
        Index("idx_check_ins_flagged", "flagged_for_review"),
        Index("idx_check_ins_consumed_token", "consumed_response_token"),
    )

    def to_domain(self) -> CheckIn:
        return CheckIn(
            id=self.id,
            introduction_id=self.introduction_id,
            check_in_number=self.check_in_number,
            scheduled_for=_parse_datetime(self.scheduled_for),
            sent_at=_parse_datetime(self.sent_at),
            responded_at=_parse_datetime(self.responded_at),
            response_type=self.response_type,
            response_raw=self.response_raw,
            response_parsed=_load_json(self.response_parsed),
            risk_level=self.risk_level,
            risk_reason=self.risk_reason,
            flagged_for_review=bool(self.flagged_for_review),
            reviewed_at=_parse_datetime(self.reviewed_at),
            reviewed_by=self.reviewed_by,
            review_notes=self.review_notes,
            response_token=self.response_token,
            response_token_expiry=_parse_datetime(self.response_token_expiry),
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, check_in: CheckIn) -> "CheckInModel":
        return cls(
            id=check_in.id,
            introduction_id=check_in.introduction_id,
            check_in_number=check_in.check_in_number,
            scheduled_for=_format_datetime(check_in.scheduled_for),
            sent_at=_format_datetime(check_in.sent_at),
            responded_at=_format_datetime(check_in.responded_at),
            response_type=_enum_value(check_in.response_type),
            response_raw=check_in.response_raw,
            response_parsed=_dump_json(check_in.response_parsed),
            risk_level=_enum_value(check_in.risk_level),
            risk_reason=check_in.risk_reason,
            flagged_for_review=check_in.flagged_for_review,
            reviewed_at=_format_datetime(check_in.reviewed_at),
            reviewed_by=check_in.reviewed_by,
            review_notes=check_in.review_notes,
            response_token=check_in.response_token,
            response_token_expiry=_format_datetime(check_in.response_token_expiry),
            created_at=_format_datetime(check_in.created_at),
        )


class CircumventionFlagModel(Base):
    """ORM model for circumvention_flags table."""

    __tablename__ = "circumvention_flags"

    id = Column(String(64), primary_key=True, nullable=False)
    introduction_id = Column(String(64), ForeignKey("introductions.id"), nullable=False)
    check_in_id = Column(String(64), ForeignKey("check_ins.id"), nullable=True)
    detection_method = Column(String(32), nullable=False)
    evidence = Column(Text, nullable=False)
    detected_at = Column(String(50), nullable=False)

    estimated_salary = Column(String(32), nullable=True)
    fee_percentage = Column(String(32), nullable=True)
    estimated_fee_owed = Column(String(32), nullable=True)

    status = Column(String(32), nullable=False)
    resolved_at = Column(String(50), nullable=True)
    resolution = Column(Text, nullable=True)
    resolution_notes = Column(Text, nullable=True)

    invoice_sent_at = Column(String(50), nullable=True)
    invoice_amount = Column(String(32), nullable=True)
    invoice_paid_at = Column(String(50), nullable=True)

    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_flags_status", "status"),
        Index("idx_flags_introduction", "introduction_id"),
        # At most one unresolved flag per check-in.
        Index(
            "uq_flags_open_check_in",
            "check_in_id",
            unique=True,
            sqlite_where=sql_text("resolved_at IS NULL AND check_in_id IS NOT NULL"),
            postgresql_where=sql_text("resolved_at IS NULL AND check_in_id IS NOT NULL"),
        ),
    )

    def to_domain(self) -> CircumventionFlag:
        return CircumventionFlag(
            id=self.id,
            introduction_id=self.introduction_id,
            check_in_id=self.check_in_id,
            detection_method=self.detection_method,
            evidence=_load_json(self.evidence) or {},
            detected_at=_parse_datetime(self.detected_at),
            estimated_salary=_parse_decimal(self.estimated_salary),
            fee_percentage=_parse_decimal(self.fee_percentage),
            estimated_fee_owed=_parse_decimal(self.estimated_fee_owed),
            status=self.status,
            resolved_at=_parse_datetime(self.resolved_at),
            resolution=self.resolution,
            resolution_notes=self.resolution_notes,
            invoice_sent_at=_parse_datetime(self.invoice_sent_at),
            invoice_amount=_parse_decimal(self.invoice_amount),
            invoice_paid_at=_parse_datetime(self.invoice_paid_at),
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, flag: CircumventionFlag) -> "CircumventionFlagModel":
        return cls(
            id=flag.id,
            introduction_id=flag.introduction_id,
            check_in_id=flag.check_in_id,
            detection_method=_enum_value(flag.detection_method),
            evidence=_dump_json(flag.evidence) or "{}",
            detected_at=_format_datetime(flag.detected_at),
            estimated_salary=_format_decimal(flag.estimated_salary),
            fee_percentage=_format_decimal(flag.fee_percentage),
            estimated_fee_owed=_format_decimal(flag.estimated_fee_owed),
            status=_enum_value(flag.status),
            resolved_at=_format_datetime(flag.resolved_at),
            resolution=flag.resolution,
            resolution_notes=flag.resolution_notes,
            invoice_sent_at=_format_datetime(flag.invoice_sent_at),
            invoice_amount=_format_decimal(flag.invoice_amount),
            invoice_paid_at=_format_datetime(flag.invoice_paid_at),
            created_at=_format_datetime(flag.created_at),
            updated_at=_format_datetime(flag.updated_at),
        )


class PlacementModel(Base):
    """ORM model for placements table (payment fields only)."""

    __tablename__ = "placements"

    id = Column(String(64), primary_key=True, nullable=False)
    employer_id = Column(String(64), ForeignKey("employers.id"), nullable=False)
    candidate_id = Column(String(64), ForeignKey("candidates.id"), nullable=False)
    job_title = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=False)
    start_date = Column(String(50), nullable=False)

    upfront_amount = Column(String(32), nullable=False)
    upfront_paid_at = Column(String(50), nullable=True)
    remaining_amount = Column(String(32), nullable=False)
    remaining_paid_at = Column(String(50), nullable=True)
    payment_status = Column(String(32), nullable=False)
    last_reminder_sent_at = Column(String(50), nullable=True)

    __table_args__ = (Index("idx_placements_payment_status", "payment_status"),)

    def to_domain(self) -> Placement:
        return Placement(
            id=self.id,
            employer_id=self.employer_id,
            candidate_id=self.candidate_id,
            job_title=self.job_title,
            company_name=self.company_name,
            start_date=_parse_datetime(self.start_date),
            upfront_amount=_parse_decimal(self.upfront_amount),
            upfront_paid_at=_parse_datetime(self.upfront_paid_at),
            remaining_amount=_parse_decimal(self.remaining_amount),
            remaining_paid_at=_parse_datetime(self.remaining_paid_at),
            payment_status=self.payment_status,
            last_reminder_sent_at=_parse_datetime(self.last_reminder_sent_at),
        )

    @classmethod
    def from_domain(cls, placement: Placement) -> "PlacementModel":
        return cls(
            id=placement.id,
            employer_id=placement.employer_id,
            candidate_id=placement.candidate_id,
            job_title=placement.job_title,
            company_name=placement.company_name,
            start_date=_format_datetime(placement.start_date),
            upfront_amount=_format_decimal(placement.upfront_amount),
            upfront_paid_at=_format_datetime(placement.upfront_paid_at),
            remaining_amount=_format_decimal(placement.remaining_amount),
            remaining_paid_at=_format_datetime(placement.remaining_paid_at),
            payment_status=_enum_value(placement.payment_status),
            last_reminder_sent_at=_format_datetime(placement.last_reminder_sent_at),
        )


class AuditEntryModel(Base):
    """ORM model for audit_entries table.

    Append-only; rows are never updated. Ordering is by autoincrement id.
    """

    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_type = Column(String(32), nullable=False)
    subject_id = Column(String(64), nullable=False)
    occurred_at = Column(String(50), nullable=False)
    actor = Column(String(255), nullable=False)
    text = Column(Text, nullable=False)

    __table_args__ = (Index("idx_audit_subject", "subject_type", "subject_id"),)

    def to_domain(self) -> AuditEntry:
        return AuditEntry(
            id=self.id,
            subject_type=self.subject_type,
            subject_id=self.subject_id,
            occurred_at=_parse_datetime(self.occurred_at),
            actor=self.actor,
            text=self.text,
        )


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO 8601 string for database storage.

    Args:
        dt: Datetime object (naive values are treated as UTC)

    Returns:
        ISO 8601 formatted string or None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO 8601 string to datetime object.

    Args:
        dt_str: ISO 8601 formatted string

    Returns:
        Timezone-aware datetime in UTC or None
    """
    if dt_str is None or dt_str == "":
        return None

    dt_str = dt_str.rstrip("Z")

    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def _format_decimal(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(Decimal(value))


def _parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(value)


def _dump_json(value: Optional[Dict[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


def _load_json(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if value is None or value == "":
        return None
    return json.loads(value)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        from sqlalchemy import inspect

        inspector = inspect(engine)
        tables = inspector.get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
