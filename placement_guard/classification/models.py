"""Structured verdict returned by the reply classifier."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from placement_guard.domain.models import CheckInStatus, Confidence, EmploymentType, RiskLevel

MANUAL_REVIEW_ACTION = "Manual review required - AI parsing failed"
UNPARSED_SUMMARY = "Unable to automatically parse response"


class ClassificationVerdict(BaseModel):
    """Bounded interpretation of one candidate reply.

    Parsed from the classification service's camelCase JSON; values outside
    the allowed sets fall back to the most cautious member instead of failing
    validation.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: CheckInStatus = CheckInStatus.UNCLEAR
    company_mentioned: Optional[str] = None
    is_introduced_company: Optional[bool] = None
    employment_type: Optional[EmploymentType] = None
    start_date_mentioned: Optional[str] = None
    salary_mentioned: Optional[str] = None
    role_title_mentioned: Optional[str] = None
    confidence: Confidence = Confidence.LOW
    risk_level: RiskLevel = RiskLevel.MEDIUM
    risk_reason: Optional[str] = None
    suggested_action: str = "Review response manually"
    summary: str = "Response parsed"

    @field_validator("suggested_action", "summary", mode="before")
    @classmethod
    def default_when_blank(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
        return _member_or(CheckInStatus, v, CheckInStatus.UNCLEAR)

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
        return _member_or(Confidence, v, Confidence.LOW)

    @field_validator("risk_level", mode="before")
    @classmethod
    def coerce_risk_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()
        return _member_or(RiskLevel, v, RiskLevel.MEDIUM)

    @field_validator("employment_type", mode="before")
    @classmethod
    def coerce_employment_type(cls, v: Any) -> Any:
        if v is None:
            return None
        return _member_or(EmploymentType, v, EmploymentType.UNKNOWN)

    @field_validator(
        "company_mentioned",
        "start_date_mentioned",
        "salary_mentioned",
        "role_title_mentioned",
        "risk_reason",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("is_introduced_company", mode="before")
    @classmethod
    def coerce_bool(cls, v: Any) -> Any:
        if isinstance(v, bool) or v is None:
            return v
        if isinstance(v, str) and v.strip().lower() in ("true", "yes"):
            return True
        if isinstance(v, str) and v.strip().lower() in ("false", "no"):
            return False
        return None

    @classmethod
    def safe_default(cls, reason: str, suggested_action: str = MANUAL_REVIEW_ACTION) -> "ClassificationVerdict":
        """Verdict used whenever the service is unavailable or its output unusable."""
        return cls(
            status=CheckInStatus.UNCLEAR,
            confidence=Confidence.LOW,
            risk_level=RiskLevel.MEDIUM,
            risk_reason=reason,
            suggested_action=suggested_action,
            summary=UNPARSED_SUMMARY,
        )

    def to_stored(self) -> Dict[str, Any]:
        """JSON-ready dict in the service's camelCase shape, stored on the check-in."""
        return self.model_dump(mode="json", by_alias=True)


def _member_or(enum_cls, value: Any, fallback):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return fallback
