"""Environment variable loading and validation.

Secrets and deployment-specific endpoints come from the environment (a local
``.env`` file is loaded by the CLI through python-dotenv); behaviour tuning
lives in the YAML file.
"""

import os
from typing import List, Mapping, Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/placement_guard.db"
DEFAULT_APP_URL = "http://localhost:3000"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        admin_email: str,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        smtp_from_email: Optional[str] = None,
        app_url: Optional[str] = None,
        database_url: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        openai_model: Optional[str] = None,
        openai_base_url: Optional[str] = None,
        trigger_secret: Optional[str] = None,
        log_level: Optional[str] = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "Placement Guard"
        self.smtp_from_email = smtp_from_email
        self.admin_email = admin_email
        self.app_url = (app_url or DEFAULT_APP_URL).rstrip("/")
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.openai_base_url = openai_base_url
        self.trigger_secret = trigger_secret
        self.log_level = log_level

    @property
    def classifier_configured(self) -> bool:
        return bool(self.openai_api_key)

    def admin_recipients(self) -> List[str]:
        return [email.strip() for email in self.admin_email.split(",") if email.strip()]


def load_environment_config(environ: Optional[Mapping[str, str]] = None) -> EnvironmentConfig:
    """Load and validate environment variables.

    Required environment variables:
    - SMTP_HOST, SMTP_PORT: outgoing mail server
    - ADMIN_EMAIL: comma-separated addresses for admin alerts

    Optional environment variables:
    - SMTP_USER / SMTP_PASS: SMTP authentication (both or neither)
    - SMTP_SENDER_NAME, SMTP_FROM_EMAIL: sender display name and address
    - APP_URL: base URL for response links (default http://localhost:3000)
    - DATABASE_URL: SQLAlchemy URL (default sqlite:///./data/placement_guard.db)
    - OPENAI_API_KEY, OPENAI_MODEL, OPENAI_BASE_URL: reply classifier
    - TRIGGER_SECRET: shared secret for externally triggered batch runs
    - LOG_LEVEL: override log level

    Args:
        environ: Mapping to read instead of ``os.environ`` (tests)

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    env = os.environ if environ is None else environ
    errors: List[str] = []

    def get(name: str) -> Optional[str]:
        value = env.get(name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    smtp_host = get("SMTP_HOST")
    smtp_port_str = get("SMTP_PORT")
    admin_email = get("ADMIN_EMAIL")
    smtp_user = get("SMTP_USER")
    smtp_pass = get("SMTP_PASS")
    smtp_from_email = get("SMTP_FROM_EMAIL")
    app_url = get("APP_URL")
    log_level = get("LOG_LEVEL")

    if not smtp_host:
        errors.append("Missing required environment variable: SMTP_HOST")
    if not smtp_port_str:
        errors.append("Missing required environment variable: SMTP_PORT")
    if not admin_email:
        errors.append("Missing required environment variable: ADMIN_EMAIL")

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if not 1 <= smtp_port <= 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if admin_email:
        for address in admin_email.split(","):
            address = address.strip()
            if address and not _is_valid_email(address):
                errors.append(f"Invalid email address format in ADMIN_EMAIL: '{address}'")

    if smtp_from_email and not _is_valid_email(smtp_from_email):
        errors.append(f"Invalid SMTP_FROM_EMAIL: '{smtp_from_email}'")

    if app_url and not app_url.startswith(("http://", "https://")):
        errors.append(f"Invalid APP_URL: '{app_url}'. Must start with http:// or https://")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Ensure SMTP_HOST, SMTP_PORT and ADMIN_EMAIL are set",
                "Verify SMTP_PORT is a number between 1 and 65535",
            ],
        )

    return EnvironmentConfig(
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        admin_email=admin_email,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=get("SMTP_SENDER_NAME"),
        smtp_from_email=smtp_from_email,
        app_url=app_url,
        database_url=get("DATABASE_URL"),
        openai_api_key=get("OPENAI_API_KEY"),
        openai_model=get("OPENAI_MODEL"),
        openai_base_url=get("OPENAI_BASE_URL"),
        trigger_secret=get("TRIGGER_SECRET"),
        log_level=log_level.upper() if log_level else None,
    )


def _is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True
