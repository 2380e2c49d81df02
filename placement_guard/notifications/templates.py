"""Template rendering for outgoing emails using Jinja2.

Every email kind has three templates in ``email_templates``:
``<kind>_subject.j2``, ``<kind>.html.j2`` and ``<kind>.txt.j2``. Only the HTML
templates are autoescaped; subjects and plain text bodies are rendered as-is.
"""

import logging
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from .models import NotificationTemplateError, RenderedEmail

logger = logging.getLogger(__name__)

EMAIL_KINDS = (
    "introduction_request",
    "introduction_accepted",
    "introduction_declined",
    "introduction_questions",
    "check_in",
    "final_check_in",
    "expiry_warning",
    "circumvention_alert",
    "circumvention_invoice",
    "payment_reminder",
)


class TemplateRenderer:
    """Renders email templates using Jinja2.

    Templates are loaded from the ``placement_guard.notifications`` package and
    cached by the Jinja2 environment across invocations.
    """

    def __init__(self, template_dir: str = "email_templates"):
        self.env = Environment(
            loader=PackageLoader("placement_guard.notifications", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["money"] = format_money

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(self, kind: str, context: Dict[str, Any]) -> RenderedEmail:
        """Render subject, HTML body and text body for one email kind.

        Args:
            kind: Email kind, one of EMAIL_KINDS
            context: Template variables

        Returns:
            RenderedEmail with a single-line subject

        Raises:
            NotificationTemplateError: If the kind is unknown or rendering fails
        """
        if kind not in EMAIL_KINDS:
            raise NotificationTemplateError(f"Unknown email kind: {kind}")

        try:
            subject = self.env.get_template(f"{kind}_subject.j2").render(context)
            html_body = self.env.get_template(f"{kind}.html.j2").render(context)
            text_body = self.env.get_template(f"{kind}.txt.j2").render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for {kind}: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

        logger.debug(f"Rendered {kind} templates")

        return RenderedEmail(
            subject=" ".join(subject.split()),
            html_body=html_body,
            text_body=text_body,
        )


def format_money(value: Any) -> str:
    """Jinja filter: ``Decimal("12500")`` -> ``$12,500.00``."""
    if value is None:
        return "N/A"
    return f"${value:,.2f}"
