"""
Transactional email providers.

Contract: `send(to, subject, html, text) -> message_id`; failures raise
ExternalServiceError.
"""
import uuid
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from flightclaims.core import get_logger, settings
from flightclaims.core.exceptions import ConfigurationError, ExternalServiceError

logger = get_logger(__name__)


class EmailProvider(ABC):
    """Abstract transactional email provider."""

    name = "abstract"

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        """Deliver one message and return the provider message id."""


class ResendEmailProvider(EmailProvider):
    """Resend HTTP API."""

    name = "resend"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("RESEND_API_KEY is not configured")
        self._api_key = api_key
        self._from = from_address
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        payload = {
            "from": self._from,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/emails",
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                f"Resend API error: {exc}", service="email", original_error=exc
            )

        message_id = response.json().get("id")
        if not message_id:
            raise ExternalServiceError("Resend API returned no message id", service="email")
        return message_id


class ConsoleEmailProvider(EmailProvider):
    """Logs messages instead of sending them (development)."""

    name = "console"

    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        message_id = f"console-{uuid.uuid4().hex[:12]}"
        logger.info(f"[console email] id={message_id} to={to} subject={subject!r}")
        logger.debug(text)
        return message_id


def build_email_provider() -> EmailProvider:
    """Provider selected by EMAIL_PROVIDER."""
    if settings.EMAIL_PROVIDER == "resend":
        return ResendEmailProvider(
            api_key=settings.RESEND_API_KEY,
            from_address=settings.EMAIL_FROM,
            base_url=settings.RESEND_API_BASE,
            timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
    return ConsoleEmailProvider()
