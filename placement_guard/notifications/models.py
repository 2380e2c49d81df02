"""Data models and exceptions for the notification gateway."""

from dataclasses import dataclass, field
from typing import List, Optional


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when template rendering fails due to a missing template or variable."""

    pass


class SMTPDeliveryError(NotificationError):
    """Raised by the SMTP client when one delivery attempt fails."""

    pass


@dataclass
class RenderedEmail:
    subject: str
    html_body: str
    text_body: str


@dataclass
class DeliveryResult:
    """Outcome of one ``send`` call.

    The gateway never raises for delivery problems; callers branch on
    ``success`` and log or retry on a later run.

    Attributes:
        success: True if the SMTP server accepted the message
        error: Last error message when delivery failed
        attempts: Number of SMTP attempts made (0 if nothing was attempted)
        recipients: Normalized recipient addresses
    """

    success: bool
    error: Optional[str] = None
    attempts: int = 0
    recipients: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, error: str, attempts: int = 0) -> "DeliveryResult":
        return cls(success=False, error=error, attempts=attempts)
