"""Result types returned by the introduction lifecycle manager."""

from dataclasses import dataclass
from typing import Optional

from placement_guard.domain.models import Candidate, Employer, Introduction
from placement_guard.notifications.models import DeliveryResult


@dataclass
class IntroductionRequestResult:
    """Outcome of ``request_introduction`` or ``resend_request_email``.

    The state change is committed even when ``delivery.success`` is False; an
    admin can resend the email later.
    """

    introduction: Introduction
    delivery: DeliveryResult


@dataclass
class CandidateResponseResult:
    introduction: Introduction
    check_ins_scheduled: int = 0
    delivery: Optional[DeliveryResult] = None


@dataclass
class IntroductionPreview:
    """What the public response page shows before the candidate answers."""

    introduction: Introduction
    company_name: str
    job_title: Optional[str]
    candidate_first_name: str


@dataclass
class Parties:
    employer: Employer
    candidate: Candidate
