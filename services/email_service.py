"""
Transactional email via a Resend-compatible HTTP API.

Sending is skipped (not failed) when the API key or sender is not configured.
Message bodies are rendered from Jinja2 templates under ``templates/email``.
"""
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import Settings, get_settings
from core.exceptions import EmailDeliveryError
from core.logger import mask_email, setup_logger
from core.schema import EmailPayload, EmailResult

logger = setup_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates" / "email"

_environment = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def _money(amount: Any, currency: Optional[str] = None) -> str:
    prefix = f"{currency} " if currency else "$"
    return f"{prefix}{float(amount or 0):,.2f}"


_environment.filters["money"] = _money


def render_email(template_name: str, **context: Any) -> str:
    """
    Render an email body template.

    Args:
        template_name: File name under templates/email (e.g. "invoice_reminder.html")
        **context: Template variables

    Returns:
        Rendered body
    """
    return _environment.get_template(template_name).render(**context)


class TransientEmailError(Exception):
    """Provider answered with a status worth retrying (429 or 5xx)."""


class EmailClient:
    """Email provider client with retries and idempotent delivery."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    def send_email(self, payload: EmailPayload) -> EmailResult:
        """
        Send one email.

        Args:
            payload: Recipient, subject and bodies

        Returns:
            Provider message id, or ``skipped=True`` when email is not configured

        Raises:
            EmailDeliveryError: If the provider rejects the message or stays
                unreachable after retries
        """
        if not self.settings.email_configured:
            logger.info(f"Email not configured, skipping '{payload.subject}' to {mask_email(payload.to)}")
            return EmailResult(skipped=True)

        body = {
            "from": self.settings.resend_from,
            "to": payload.to,
            "subject": payload.subject,
            "html": payload.html,
            "text": payload.text,
            "reply_to": self.settings.resend_reply_to,
        }
        headers = {
            "Authorization": f"Bearer {self.settings.resend_api_key}",
            "Content-Type": "application/json",
            # Same payload -> same key, so a retried POST is delivered once
            "Idempotency-Key": hashlib.sha256(
                json.dumps(body, sort_keys=True).encode("utf-8")
            ).hexdigest(),
        }

        try:
            response = self._post(body, headers)
        except (requests.exceptions.RequestException, TransientEmailError) as e:
            logger.error(f"Email provider unreachable: {e}")
            raise EmailDeliveryError(
                "Email provider unreachable",
                details={"error": str(e)}
            )

        if not response.ok:
            logger.error(f"Email send failed with HTTP {response.status_code}")
            raise EmailDeliveryError(
                f"Email send failed: {response.text}",
                details={"status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        logger.info(f"Sent '{payload.subject}' to {mask_email(payload.to)}")
        return EmailResult(id=data.get("id"))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(
            (requests.exceptions.Timeout, requests.exceptions.ConnectionError, TransientEmailError)
        ),
        reraise=True,
    )
    def _post(self, body: Dict[str, Any], headers: Dict[str, str]) -> requests.Response:
        response = self.session.post(
            self.settings.resend_api_url,
            headers=headers,
            data=json.dumps(body),
            timeout=self.settings.email_timeout,
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientEmailError(f"HTTP {response.status_code}")
        return response


# Singleton client instance
_client: Optional[EmailClient] = None


def get_email_client() -> EmailClient:
    """Get or create the email client singleton."""
    global _client
    if _client is None:
        _client = EmailClient()
    return _client


def reset_email_client() -> None:
    """Drop the cached client (useful for testing)."""
    global _client
    _client = None
