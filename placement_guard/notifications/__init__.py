"""Email notifications: templated messages delivered over SMTP.

- NotificationGateway: renders an email kind and delivers it with retry
- DeliveryResult: outcome of one send, never an exception
- TemplateRenderer: Jinja2 subject/HTML/text rendering per email kind
- SMTPClient: smtplib wrapper with TLS/SSL support
"""

from .models import (
    DeliveryResult,
    NotificationError,
    NotificationTemplateError,
    RenderedEmail,
    SMTPDeliveryError,
)
from .service import NotificationGateway
from .smtp_client import SMTPClient, build_sender_address, parse_recipients
from .templates import EMAIL_KINDS, TemplateRenderer

__all__ = [
    "NotificationGateway",
    "DeliveryResult",
    "RenderedEmail",
    "NotificationError",
    "NotificationTemplateError",
    "SMTPDeliveryError",
    "TemplateRenderer",
    "EMAIL_KINDS",
    "SMTPClient",
    "build_sender_address",
    "parse_recipients",
]
