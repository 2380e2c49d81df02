"""Test doubles for the notification gateway and the classification service.

The gateway double records every ``send_*`` call and answers with a fixed
DeliveryResult, so service tests can assert on what would have been emailed
without rendering templates or opening SMTP connections.
"""

from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import Mock

from placement_guard.classification.client import ClassificationUnavailableError
from placement_guard.notifications import NotificationGateway
from placement_guard.notifications.models import DeliveryResult

SEND_METHODS = (
    "send_introduction_request",
    "send_introduction_accepted",
    "send_introduction_declined",
    "send_introduction_questions",
    "send_check_in",
    "send_final_check_in",
    "send_expiry_warning",
    "send_circumvention_alert",
    "send_circumvention_invoice",
    "send_payment_reminder",
)


def delivered() -> DeliveryResult:
    return DeliveryResult(success=True, attempts=1, recipients=["someone@example.com"])


def undelivered(error: str = "SMTP server unavailable") -> DeliveryResult:
    return DeliveryResult.failed(error, attempts=3)


def make_gateway(success: bool = True) -> Mock:
    """Mock NotificationGateway whose every send method returns the same result."""
    gateway = Mock(spec=NotificationGateway)
    result = delivered() if success else undelivered()
    for name in SEND_METHODS:
        getattr(gateway, name).return_value = result
    return gateway


def set_delivery(gateway: Mock, success: bool) -> None:
    result = delivered() if success else undelivered()
    for name in SEND_METHODS:
        getattr(gateway, name).return_value = result


def sent_token(gateway: Mock, method: str = "send_introduction_request") -> str:
    """Token passed to the most recent call of a token-carrying send method."""
    call = getattr(gateway, method).call_args
    positions = {
        "send_introduction_request": 3,
        "send_check_in": 4,
        "send_final_check_in": 3,
    }
    return call.args[positions[method]]


class FakeClassificationClient:
    """Classification client returning canned JSON or raising like an outage.

    Args:
        response: Dict returned for every reply (camelCase, as the service sends it)
        error: Message of a ClassificationUnavailableError raised instead
    """

    def __init__(self, response: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.response = response
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    @property
    def configured(self) -> bool:
        return self.error is None

    def classify(self, reply_text: str, company_name: str) -> Dict[str, Any]:
        self.calls.append((reply_text, company_name))
        if self.error is not None:
            raise ClassificationUnavailableError(self.error)
        return dict(self.response or {})


HIRED_AT_INTRODUCED_COMPANY = {
    "status": "hired_there",
    "companyMentioned": "Acme Corp",
    "isIntroducedCompany": True,
    "employmentType": "full_time",
    "startDateMentioned": "last month",
    "salaryMentioned": None,
    "roleTitleMentioned": None,
    "confidence": "high",
    "riskLevel": "HIGH",
    "riskReason": "Candidate started at the introduced company",
    "suggestedAction": "Open a circumvention investigation",
    "summary": "Candidate started at Acme Corp last month",
}

STILL_LOOKING = {
    "status": "still_looking",
    "companyMentioned": None,
    "isIntroducedCompany": None,
    "confidence": "high",
    "riskLevel": "LOW",
    "riskReason": "Still searching",
    "suggestedAction": "No action",
    "summary": "Candidate is still looking",
}
