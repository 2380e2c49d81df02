"""Deterministic risk rule applied on top of the model's extraction.

The model's own ``riskLevel`` is advisory. The level stored on a check-in is
always recomputed here from the extracted status and company attribution:

- employment at the introduced company: HIGH
- an offer or hire without clear company attribution: MEDIUM
- still searching, or interviewing elsewhere: LOW
- rejected, withdrew, or hired at a different company: CLEAR
"""

import re
from typing import Optional, Tuple

from placement_guard.domain.models import CheckInStatus, RiskLevel

from .models import ClassificationVerdict

LEGAL_SUFFIXES = {
    "inc",
    "incorporated",
    "corp",
    "corporation",
    "co",
    "company",
    "llc",
    "llp",
    "ltd",
    "limited",
    "plc",
    "gmbh",
    "ag",
    "sa",
    "bv",
    "pty",
    "group",
    "the",
}

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def normalize_company_name(name: str) -> str:
    """Lowercase, drop punctuation and legal suffixes: ``"Acme Corp."`` -> ``"acme"``."""
    tokens = [t for t in _TOKEN_RE.findall(name.lower()) if t not in LEGAL_SUFFIXES]
    return " ".join(tokens)


def company_matches(mentioned: Optional[str], introduced: Optional[str]) -> Optional[bool]:
    """Compare a mentioned company against the introduced one.

    Returns None when either side is missing or normalizes to nothing.
    """
    if not mentioned or not introduced:
        return None
    left = normalize_company_name(mentioned)
    right = normalize_company_name(introduced)
    if not left or not right:
        return None
    if left == right:
        return True
    # "acme" vs "acme robotics": one name contained in the other on word boundaries
    return f" {left} " in f" {right} " or f" {right} " in f" {left} "


def resolve_attribution(verdict: ClassificationVerdict, introduced_company: str) -> Optional[bool]:
    """Decide whether the reply is about the introduced company.

    The local comparison fills in a null model answer; when both exist and
    disagree, attribution is unknown.
    """
    local = company_matches(verdict.company_mentioned, introduced_company)
    model = verdict.is_introduced_company

    if verdict.status == CheckInStatus.HIRED_THERE and model is None and local is None:
        return True
    if model is None:
        return local
    if local is None or local == model:
        return model
    return None


def risk_for(status: CheckInStatus, attribution: Optional[bool]) -> Tuple[RiskLevel, str]:
    """Map status plus attribution to a risk level and reason.

    ``attribution`` is None when no company was named or when the model and
    the local name check disagree. A reported hire is never CLEAR then.
    """
    if status == CheckInStatus.HIRED_THERE:
        if attribution is False:
            return RiskLevel.MEDIUM, "Reports a hire but the company named differs from the introduced one"
        return RiskLevel.HIGH, "Candidate reports employment at the introduced company"

    if status == CheckInStatus.HIRED_ELSEWHERE:
        if attribution is True:
            return RiskLevel.HIGH, "Reported new employer matches the introduced company"
        if attribution is None:
            return RiskLevel.MEDIUM, "Reports a hire without clear company attribution"
        return RiskLevel.CLEAR, "Hired at a different company"

    if status == CheckInStatus.OFFER:
        if attribution is False:
            return RiskLevel.LOW, "Offer from a different company"
        return RiskLevel.MEDIUM, "Offer without clear attribution away from the introduced company"

    if status == CheckInStatus.INTERVIEWING:
        if attribution is True:
            return RiskLevel.MEDIUM, "Still interviewing with the introduced company"
        return RiskLevel.LOW, "Still interviewing"

    if status == CheckInStatus.STILL_LOOKING:
        return RiskLevel.LOW, "Still searching"

    if status in (CheckInStatus.REJECTED, CheckInStatus.WITHDREW, CheckInStatus.NO_RESPONSE):
        return RiskLevel.CLEAR, f"Candidate reports: {status.value.replace('_', ' ')}"

    return RiskLevel.MEDIUM, "Status could not be determined from the reply"


def apply_risk_rule(verdict: ClassificationVerdict, introduced_company: str) -> ClassificationVerdict:
    """Return a copy of ``verdict`` with attribution and risk level recomputed."""
    attribution = resolve_attribution(verdict, introduced_company)
    level, rule_reason = risk_for(verdict.status, attribution)

    # the model's explanation is kept only when it argued for the same level
    reason = verdict.risk_reason if verdict.risk_level == level and verdict.risk_reason else rule_reason

    return verdict.model_copy(
        update={
            "is_introduced_company": attribution,
            "risk_level": level,
            "risk_reason": reason,
        }
    )
