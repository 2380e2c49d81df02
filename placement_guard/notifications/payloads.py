"""Template context builders, one per email kind.

Each builder turns domain models into the flat dictionary its templates
expect. Dates are preformatted for display so templates stay logic-light.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from placement_guard.domain.models import (
    Candidate,
    CheckIn,
    CheckInStatus,
    CircumventionFlag,
    Employer,
    Introduction,
    PaymentKind,
    Placement,
)
from placement_guard.security.tokens import check_in_response_url, introduction_response_url
from placement_guard.utils.timestamps import add_days, days_between, format_date_for_display

DEFAULT_JOB_TITLE = "the position"
LAST_CHECK_IN_EXCERPT = 50
INVOICE_DUE_DAYS = 30

CHECK_IN_PROMPTS: Dict[int, Dict[str, str]] = {
    1: {
        "greeting": "It's been about a month since we connected you with {company}. We wanted to check in!",
        "question": "Have you had a chance to interview with them?",
    },
    2: {
        "greeting": "Hope you're doing well! It's been about 2 months since your introduction to {company}.",
        "question": "How has the process been going?",
    },
    3: {
        "greeting": "Just checking in: it's been about 3 months since we connected you with {company}.",
        "question": "What's the current status of this opportunity?",
    },
    4: {
        "greeting": "It's been about 6 months since your introduction to {company}. We'd love a quick update!",
        "question": "Where did things land with this opportunity?",
    },
    5: {
        "greeting": "Time flies! It's been a year since we connected you with {company}.",
        "question": "We'd love to know how things worked out.",
    },
}

CHECK_IN_ANSWER_LABELS = [
    (CheckInStatus.INTERVIEWING, "Still interviewing"),
    (CheckInStatus.OFFER, "I received an offer"),
    (CheckInStatus.HIRED_THERE, "I was hired there"),
    (CheckInStatus.HIRED_ELSEWHERE, "I took a job elsewhere"),
    (CheckInStatus.REJECTED, "They passed"),
    (CheckInStatus.WITHDREW, "I withdrew"),
    (CheckInStatus.NO_RESPONSE, "I never heard back"),
    (CheckInStatus.STILL_LOOKING, "Still looking"),
]


def introduction_request_context(
    candidate: Candidate,
    employer: Employer,
    introduction: Introduction,
    token: str,
    expiry_days: int,
    app_url: str,
) -> Dict[str, Any]:
    respond_url = introduction_response_url(app_url, token)
    return {
        "candidate_first_name": candidate.first_name,
        "company_name": employer.company_name,
        "job_title": introduction.job_title or DEFAULT_JOB_TITLE,
        "accept_url": f"{respond_url}?response=ACCEPTED",
        "decline_url": f"{respond_url}?response=DECLINED",
        "questions_url": f"{respond_url}?response=QUESTIONS",
        "expiry_days": expiry_days,
    }


def introduction_accepted_context(
    employer: Employer, candidate: Candidate, introduction: Introduction, app_url: str
) -> Dict[str, Any]:
    return {
        "employer_name": employer.contact_name or employer.company_name,
        "candidate_name": candidate.name,
        "candidate_email": candidate.email,
        "job_title": introduction.job_title or DEFAULT_JOB_TITLE,
        "profile_url": f"{app_url}/employer/candidates/{candidate.id}",
    }


def introduction_declined_context(
    employer: Employer, introduction: Introduction, app_url: str
) -> Dict[str, Any]:
    return {
        "employer_name": employer.contact_name or employer.company_name,
        "job_title": introduction.job_title or DEFAULT_JOB_TITLE,
        "search_url": f"{app_url}/employer/search",
    }


def introduction_questions_context(
    candidate: Candidate,
    employer: Employer,
    introduction: Introduction,
    questions: str,
    app_url: str,
) -> Dict[str, Any]:
    return {
        "candidate_name": candidate.name,
        "company_name": employer.company_name,
        "job_title": introduction.job_title or DEFAULT_JOB_TITLE,
        "questions": questions,
        "admin_url": f"{app_url}/admin/introductions/{introduction.id}",
    }


def check_in_context(
    candidate: Candidate,
    employer: Employer,
    introduction: Introduction,
    check_in: CheckIn,
    token: str,
    app_url: str,
    now: datetime,
) -> Dict[str, Any]:
    """Context for a scheduled check-in (numbers 1-5).

    Numbers without a dedicated prompt reuse the last one.
    """
    company = employer.company_name
    prompt = CHECK_IN_PROMPTS.get(check_in.check_in_number, CHECK_IN_PROMPTS[max(CHECK_IN_PROMPTS)])
    introduced_at = introduction.introduced_at or introduction.protection_starts_at
    return {
        "candidate_first_name": candidate.first_name,
        "company_name": company,
        "job_title": introduction.job_title or DEFAULT_JOB_TITLE,
        "check_in_number": check_in.check_in_number,
        "greeting": prompt["greeting"].format(company=company),
        "question": prompt["question"],
        "days_since_introduction": days_between(introduced_at, now),
        "respond_url": check_in_response_url(app_url, token),
        "answers": [
            {"label": label, "url": check_in_response_url(app_url, token, status.value)}
            for status, label in CHECK_IN_ANSWER_LABELS
        ],
    }


def final_check_in_context(
    candidate: Candidate,
    employer: Employer,
    introduction: Introduction,
    token: str,
    app_url: str,
) -> Dict[str, Any]:
    return {
        "candidate_name": candidate.name,
        "company_name": employer.company_name,
        "job_title": introduction.job_title or DEFAULT_JOB_TITLE,
        "yes_url": check_in_response_url(app_url, token, "yes"),
        "no_url": check_in_response_url(app_url, token, "no"),
    }


def expiry_row(
    introduction: Introduction,
    candidate: Optional[Candidate],
    employer: Optional[Employer],
    last_check_in: Optional[CheckIn],
) -> Dict[str, Any]:
    """One table row of the advance expiry warning."""
    return {
        "introduction_id": introduction.id,
        "candidate_name": candidate.name if candidate else introduction.candidate_id,
        "company_name": employer.company_name if employer else introduction.employer_id,
        "job_title": introduction.job_title or "N/A",
        "introduced_on": format_date_for_display(introduction.introduced_at),
        "expires_on": format_date_for_display(introduction.protection_ends_at),
        "last_check_in": summarize_last_check_in(last_check_in),
    }


def summarize_last_check_in(check_in: Optional[CheckIn]) -> str:
    if check_in is None or check_in.sent_at is None:
        return "No check-ins sent"
    if check_in.responded_at is None:
        return "No response"
    excerpt = (check_in.response_raw or "")[:LAST_CHECK_IN_EXCERPT]
    if not excerpt and check_in.response_type is not None:
        excerpt = check_in.response_type.value
    return f'{format_date_for_display(check_in.responded_at)} - "{excerpt or "Response received"}"'


def expiry_warning_context(
    rows: Sequence[Dict[str, Any]], days_until_expiry: int, app_url: str
) -> Dict[str, Any]:
    return {
        "rows": list(rows),
        "count": len(rows),
        "days_until_expiry": days_until_expiry,
        "dashboard_url": f"{app_url}/admin/introductions?filter=expiring",
    }


def circumvention_alert_context(
    flag: CircumventionFlag,
    introduction: Introduction,
    candidate: Optional[Candidate],
    employer: Optional[Employer],
    check_in: Optional[CheckIn],
    app_url: str,
) -> Dict[str, Any]:
    evidence_lines: List[str] = [f"{key}: {value}" for key, value in sorted(flag.evidence.items())]
    return {
        "flag_id": flag.id,
        "detection_method": flag.detection_method.value,
        "candidate_name": candidate.name if candidate else introduction.candidate_id,
        "company_name": employer.company_name if employer else introduction.employer_id,
        "job_title": introduction.job_title or "N/A",
        "introduced_on": format_date_for_display(introduction.introduced_at),
        "check_in_number": check_in.check_in_number if check_in else None,
        "response_raw": check_in.response_raw if check_in else None,
        "risk_reason": check_in.risk_reason if check_in else None,
        "evidence_lines": evidence_lines,
        "estimated_fee_owed": flag.estimated_fee_owed,
        "admin_url": f"{app_url}/admin/circumvention/{flag.id}",
    }


def circumvention_invoice_context(
    flag: CircumventionFlag,
    introduction: Introduction,
    candidate: Candidate,
    employer: Employer,
    amount: Decimal,
    now: datetime,
    custom_message: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "invoice_number": invoice_number(flag, now),
        "contact_name": employer.contact_name or employer.company_name,
        "company_name": employer.company_name,
        "candidate_name": candidate.name,
        "job_title": introduction.job_title or "N/A",
        "introduced_on": format_date_for_display(introduction.introduced_at),
        "invoice_date": format_date_for_display(now),
        "due_date": format_date_for_display(add_days(now, INVOICE_DUE_DAYS)),
        "amount": amount,
        "custom_message": custom_message,
    }


def invoice_number(flag: CircumventionFlag, now: datetime) -> str:
    """``INV-20250304-1A2B``: invoice date plus the tail of the flag id."""
    return f"INV-{now:%Y%m%d}-{flag.id.replace('-', '')[-4:].upper()}"


def payment_reminder_context(
    placement: Placement,
    employer: Optional[Employer],
    kind: PaymentKind,
    due_date: datetime,
    now: datetime,
    app_url: str,
) -> Dict[str, Any]:
    amount = placement.upfront_amount if kind == PaymentKind.UPFRONT else placement.remaining_amount
    return {
        "contact_name": (employer.contact_name or employer.company_name) if employer else "there",
        "company_name": placement.company_name,
        "job_title": placement.job_title,
        "kind": kind.value,
        "amount": amount,
        "due_on": format_date_for_display(due_date),
        "days_overdue": max(days_between(due_date, now), 0),
        "payment_url": f"{app_url}/employer/payments/{placement.id}",
    }
