"""
Email delivery via the Resend API.

Renders one of the registered Jinja2 templates against a context, derives a
plain-text alternative, and hands both to Resend. `EmailGateway.send` never
raises: configuration problems and transport failures come back as a failed
DeliveryResult.
"""

import math
import os
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

import resend
from html2text import html2text
from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound, select_autoescape

from models.notification import DeliveryResult
from notifications.error_logger import log_notification_error
from notifications.errors import UnknownTemplateError
from shared.utils import parse_date_string

TEMPLATE_NAMES = (
    "welcome",
    "transaction-notification",
    "transaction-digest",
    "budget-alert",
    "weekly-report",
    "monthly-report",
    "password-reset",
    "email-verification",
    "newsletter",
)

DEFAULT_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")

SENDER_NAME = "EXTrace"


def format_currency(amount: Any) -> Any:
    """1234.5 -> $1,234.50; non-numbers pass through unchanged."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return amount
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_percentage(value: Any) -> Any:
    """Round half up to a whole percent: 92.5 -> 93%."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return f"{math.floor(value + 0.5)}%"


def format_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return f"{value:,}"


def format_date(value: Any) -> Any:
    """Datetime, date or ISO string -> 'January 24, 2026'."""
    if isinstance(value, str):
        value = parse_date_string(value) or value
    if isinstance(value, (datetime, date)):
        return f"{value:%B} {value.day}, {value.year}"
    return value


def build_environment(template_dir: str) -> Environment:
    env = Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["currency"] = format_currency
    env.filters["percentage"] = format_percentage
    env.filters["format_number"] = format_number
    env.filters["format_date"] = format_date
    return env


def html_to_text(html: str) -> str:
    return html2text(html).strip()


class EmailGateway:
    """
    Renders registered templates and sends them through Resend.

    Templates are compiled once at construction. A registered name whose file
    is missing is reported then and fails each send with a configuration error.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        template_dir: Optional[str] = None,
        transport: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY")
        self.from_email = from_email or os.getenv(
            "NOTIFICATION_FROM_EMAIL", "notifications@extrace.app"
        )
        self.template_dir = (
            template_dir or os.getenv("EMAIL_TEMPLATE_DIR") or DEFAULT_TEMPLATE_DIR
        )
        self.transport = transport
        self.templates: Dict[str, Template] = {}
        self.missing_templates: list[str] = []

        if self.api_key:
            resend.api_key = self.api_key

        self._load_templates()

    def _load_templates(self) -> None:
        env = build_environment(self.template_dir)
        for name in TEMPLATE_NAMES:
            try:
                self.templates[name] = env.get_template(f"{name}.html")
            except TemplateNotFound:
                self.missing_templates.append(name)

        if self.missing_templates:
            print(
                f"  ⚠️  Missing email templates in {self.template_dir}: "
                f"{', '.join(self.missing_templates)}"
            )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render a registered template to HTML.

        Raises:
            UnknownTemplateError: template_name is not registered or its file is missing
        """
        template = self.templates.get(template_name)
        if template is None:
            raise UnknownTemplateError(template_name)
        return template.render(**context)

    def send(
        self,
        recipient: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        text_only: bool = False,
        headers: Optional[Dict[str, str]] = None,
    ) -> DeliveryResult:
        """
        Render and deliver one email.

        Args:
            recipient: Recipient email address
            subject: Subject line
            template_name: One of TEMPLATE_NAMES
            context: Template variables
            text_only: Send only the plain-text part (user prefers text email)
            headers: Extra headers, e.g. List-Unsubscribe

        Returns:
            DeliveryResult with message_id on success, or error and error_kind
        """
        try:
            html = self.render(template_name, context)
        except UnknownTemplateError as e:
            return self._failure("configuration", str(e), recipient, template_name)
        except Exception as e:
            return self._failure(
                "configuration", f"Template render failed: {e}", recipient, template_name
            )

        if self.transport is None and not self.api_key:
            return self._failure(
                "configuration", "RESEND_API_KEY is not set", recipient, template_name
            )

        params: Dict[str, Any] = {
            "from": f"{SENDER_NAME} <{self.from_email}>",
            "to": recipient,
            "subject": subject,
            "text": html_to_text(html),
        }
        if not text_only:
            params["html"] = html
        if headers:
            params["headers"] = headers

        try:
            send = self.transport or resend.Emails.send
            response = send(params)
        except Exception as e:
            return self._failure("transport", str(e), recipient, template_name)

        message_id = response.get("id") if isinstance(response, dict) else None
        print(f"  ✓ Sent {template_name} email ({message_id})")
        return DeliveryResult(success=True, message_id=message_id)

    def _failure(
        self, kind: str, message: str, recipient: str, template_name: str
    ) -> DeliveryResult:
        error_file = log_notification_error(
            error_type="delivery",
            error_message=message,
            context={
                "error_kind": kind,
                "recipient": recipient,
                "template": template_name,
            },
        )
        print(f"  ✗ Failed to send {template_name} email. Details logged to: {error_file}")
        return DeliveryResult(success=False, error=message, error_kind=kind)
