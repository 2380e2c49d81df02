"""Notification gateway: the single place the engine sends email from.

``send`` delivers one message with bounded retry/backoff and reports the
outcome as a DeliveryResult; it never raises for delivery problems. The
``send_*`` methods build a template context for one email kind, render it and
hand the result to ``send``.
"""

import logging
import time
from datetime import datetime
from decimal import Decimal
from email.message import EmailMessage
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Union

from placement_guard.config.environment import EnvironmentConfig
from placement_guard.config.models import EmailConfig
from placement_guard.domain.models import (
    Candidate,
    CheckIn,
    CircumventionFlag,
    Employer,
    Introduction,
    PaymentKind,
    Placement,
)
from placement_guard.logging import get_logger
from placement_guard.utils.timestamps import utc_now

from . import payloads
from .models import DeliveryResult, NotificationTemplateError, SMTPDeliveryError
from .smtp_client import SMTPClient, build_sender_address, parse_recipients
from .templates import TemplateRenderer

logger = get_logger(__name__, component="notification")

MAX_RETRY_DELAY = 60.0

Recipients = Union[str, Iterable[str]]


class NotificationGateway:
    """Sends templated emails through SMTP.

    Args:
        env_config: SMTP settings, admin recipients and the public app URL
        email_config: TLS and retry settings
        template_renderer: Renderer instance (default one if None)
        smtp_client: SMTP client instance (default one if None)
        sleep: Backoff sleep function (tests pass a no-op)
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        email_config: Optional[EmailConfig] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        smtp_client: Optional[SMTPClient] = None,
        sleep: Optional[Callable[[float], None]] = None,
        logger_instance: Optional[logging.Logger] = None,
    ):
        self.env_config = env_config
        self.email_config = email_config or EmailConfig()
        self.template_renderer = template_renderer or TemplateRenderer()
        self.smtp_client = smtp_client or SMTPClient()
        self.sleep = sleep or time.sleep
        self.logger = logger_instance or logger

    @property
    def app_url(self) -> str:
        return self.env_config.app_url

    def send(
        self,
        to: Recipients,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> DeliveryResult:
        """Deliver one message, retrying transient SMTP failures.

        Returns:
            DeliveryResult; ``success`` is False after the last failed attempt
            or when the recipients are invalid
        """
        try:
            recipients = parse_recipients(to)
        except ValueError as e:
            self.logger.error(
                f"Not sending '{subject}': {e}",
                extra={"event": "notification.invalid_recipient"},
            )
            return DeliveryResult.failed(str(e))

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = build_sender_address(self.env_config)
        message["To"] = ", ".join(recipients)
        if text_body:
            message.set_content(text_body)
            message.add_alternative(html_body, subtype="html")
        else:
            message.set_content(html_body, subtype="html")

        max_attempts = self.email_config.max_retries + 1
        last_error = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = self.email_config.retry_initial_delay * (
                    self.email_config.retry_backoff_multiplier ** (attempt - 2)
                )
                delay = min(delay, MAX_RETRY_DELAY)
                self.logger.warning(
                    f"Retrying delivery of '{subject}' (attempt {attempt}/{max_attempts}) "
                    f"after {delay:.1f}s delay",
                    extra={"event": "notification.send.attempt", "attempt": attempt},
                )
                self.sleep(delay)

            try:
                self.smtp_client.send(message, self.env_config, self.email_config.use_tls)
            except SMTPDeliveryError as e:
                last_error = str(e)
                retry_remaining = attempt < max_attempts
                log = self.logger.warning if retry_remaining else self.logger.error
                log(
                    f"SMTP delivery of '{subject}' failed (attempt {attempt}/{max_attempts}): {e}",
                    extra={
                        "event": "notification.send.failure",
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                        "retry_remaining": retry_remaining,
                    },
                )
                continue

            self.logger.info(
                f"Sent '{subject}' to {', '.join(recipients)} (attempts: {attempt})",
                extra={
                    "event": "notification.send.success",
                    "attempt": attempt,
                    "recipients": recipients,
                },
            )
            return DeliveryResult(success=True, attempts=attempt, recipients=recipients)

        return DeliveryResult(
            success=False, error=last_error, attempts=max_attempts, recipients=recipients
        )

    def send_template(self, kind: str, to: Recipients, context: Dict[str, Any]) -> DeliveryResult:
        """Render one email kind and send it."""
        full_context = {
            "app_name": self.env_config.smtp_sender_name,
            "app_url": self.app_url,
            "year": utc_now().year,
            **context,
        }
        try:
            rendered = self.template_renderer.render(kind, full_context)
        except NotificationTemplateError as e:
            self.logger.error(
                f"Not sending {kind} email: {e}",
                extra={"event": "notification.template_error", "kind": kind},
            )
            return DeliveryResult.failed(str(e))

        return self.send(to, rendered.subject, rendered.html_body, rendered.text_body)

    def send_introduction_request(
        self,
        candidate: Candidate,
        employer: Employer,
        introduction: Introduction,
        token: str,
        expiry_days: int,
    ) -> DeliveryResult:
        context = payloads.introduction_request_context(
            candidate, employer, introduction, token, expiry_days, self.app_url
        )
        return self.send_template("introduction_request", candidate.email, context)

    def send_introduction_accepted(
        self, employer: Employer, candidate: Candidate, introduction: Introduction
    ) -> DeliveryResult:
        context = payloads.introduction_accepted_context(
            employer, candidate, introduction, self.app_url
        )
        return self.send_template("introduction_accepted", employer.contact_email, context)

    def send_introduction_declined(
        self, employer: Employer, introduction: Introduction
    ) -> DeliveryResult:
        context = payloads.introduction_declined_context(employer, introduction, self.app_url)
        return self.send_template("introduction_declined", employer.contact_email, context)

    def send_introduction_questions(
        self,
        candidate: Candidate,
        employer: Employer,
        introduction: Introduction,
        questions: str,
    ) -> DeliveryResult:
        context = payloads.introduction_questions_context(
            candidate, employer, introduction, questions, self.app_url
        )
        return self.send_template(
            "introduction_questions", self.env_config.admin_recipients(), context
        )

    def send_check_in(
        self,
        candidate: Candidate,
        employer: Employer,
        introduction: Introduction,
        check_in: CheckIn,
        token: str,
        now: Optional[datetime] = None,
    ) -> DeliveryResult:
        context = payloads.check_in_context(
            candidate, employer, introduction, check_in, token, self.app_url, now or utc_now()
        )
        return self.send_template("check_in", candidate.email, context)

    def send_final_check_in(
        self,
        candidate: Candidate,
        employer: Employer,
        introduction: Introduction,
        token: str,
    ) -> DeliveryResult:
        context = payloads.final_check_in_context(
            candidate, employer, introduction, token, self.app_url
        )
        return self.send_template("final_check_in", candidate.email, context)

    def send_expiry_warning(
        self, rows: Sequence[Dict[str, Any]], days_until_expiry: int
    ) -> DeliveryResult:
        context = payloads.expiry_warning_context(rows, days_until_expiry, self.app_url)
        return self.send_template("expiry_warning", self.env_config.admin_recipients(), context)

    def send_circumvention_alert(
        self,
        flag: CircumventionFlag,
        introduction: Introduction,
        candidate: Optional[Candidate],
        employer: Optional[Employer],
        check_in: Optional[CheckIn] = None,
    ) -> DeliveryResult:
        context = payloads.circumvention_alert_context(
            flag, introduction, candidate, employer, check_in, self.app_url
        )
        return self.send_template(
            "circumvention_alert", self.env_config.admin_recipients(), context
        )

    def send_circumvention_invoice(
        self,
        flag: CircumventionFlag,
        introduction: Introduction,
        candidate: Candidate,
        employer: Employer,
        amount: Decimal,
        now: Optional[datetime] = None,
        custom_message: Optional[str] = None,
    ) -> DeliveryResult:
        """Send the invoice to the employer with the admins on copy."""
        context = payloads.circumvention_invoice_context(
            flag, introduction, candidate, employer, amount, now or utc_now(), custom_message
        )
        recipients = [employer.contact_email, *self.env_config.admin_recipients()]
        return self.send_template("circumvention_invoice", recipients, context)

    def send_payment_reminder(
        self,
        placement: Placement,
        employer: Optional[Employer],
        kind: PaymentKind,
        due_date: datetime,
        now: Optional[datetime] = None,
    ) -> DeliveryResult:
        context = payloads.payment_reminder_context(
            placement, employer, kind, due_date, now or utc_now(), self.app_url
        )
        to = employer.contact_email if employer else self.env_config.admin_recipients()
        return self.send_template("payment_reminder", to, context)
