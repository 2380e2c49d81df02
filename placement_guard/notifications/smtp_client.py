"""SMTP client wrapper for email delivery.

A thin wrapper around smtplib with TLS/SSL, authentication and connection
cleanup. One ``send`` call is one delivery attempt; retries live in the
gateway.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Iterable, List, Optional, Union

from email_validator import EmailNotValidError, validate_email

from placement_guard.config.environment import EnvironmentConfig

from .models import SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Wrapper around smtplib for sending email messages.

    The smtplib constructors are injectable so tests can hand in mocks.
    """

    def __init__(
        self,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
        timeout: float = 30.0,
    ):
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL
        self.timeout = timeout

    def send(
        self,
        message: EmailMessage,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
    ) -> None:
        """Send an email message via SMTP.

        Port 465 uses implicit TLS; any other port uses plain SMTP upgraded
        with STARTTLS when ``use_tls`` is set.

        Raises:
            SMTPDeliveryError: If message delivery fails
        """
        smtp = None
        try:
            if env_config.smtp_port == 465:
                logger.debug(
                    f"Connecting to {env_config.smtp_host}:{env_config.smtp_port} with implicit TLS"
                )
                smtp = self.smtp_ssl_factory(
                    env_config.smtp_host,
                    env_config.smtp_port,
                    context=ssl.create_default_context(),
                    timeout=self.timeout,
                )
            else:
                logger.debug(f"Connecting to {env_config.smtp_host}:{env_config.smtp_port}")
                smtp = self.smtp_factory(
                    env_config.smtp_host, env_config.smtp_port, timeout=self.timeout
                )

                if use_tls:
                    logger.debug("Upgrading connection with STARTTLS")
                    smtp.starttls(context=ssl.create_default_context())

            if env_config.smtp_user and env_config.smtp_pass:
                logger.debug(f"Authenticating as {env_config.smtp_user}")
                smtp.login(env_config.smtp_user, env_config.smtp_pass)

            smtp.send_message(message)
            logger.debug(f"Message sent to {message['To']}")

        except smtplib.SMTPException as e:
            raise SMTPDeliveryError(f"SMTP error during message delivery: {e}") from e
        except OSError as e:
            raise SMTPDeliveryError(f"Network error during SMTP connection: {e}") from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def parse_recipients(recipients: Union[str, Iterable[str]]) -> List[str]:
    """Normalize and validate one or more email addresses.

    Accepts a comma-separated string or an iterable of addresses.

    Raises:
        ValueError: If any address is invalid or none is given
    """
    if isinstance(recipients, str):
        raw_emails = recipients.split(",")
    else:
        raw_emails = list(recipients)

    validated_emails = []
    for email in (e.strip() for e in raw_emails):
        if not email:
            continue
        try:
            validated = validate_email(email, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(f"Invalid recipient address '{email}': {e}") from e
        validated_emails.append(validated.normalized)

    if not validated_emails:
        raise ValueError("No valid recipient address given")

    return validated_emails


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the ``From`` header.

    Prefers SMTP_FROM_EMAIL, then SMTP_USER, then ``noreply@<smtp host>``.
    """
    sender_email = (
        env_config.smtp_from_email
        or env_config.smtp_user
        or f"noreply@{env_config.smtp_host}"
    )
    return f"{env_config.smtp_sender_name} <{sender_email}>"
