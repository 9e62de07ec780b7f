"""
Email transports

SendGridProvider posts to the SendGrid v3 API. ConsoleProvider logs the
message instead and is used when no API key is configured (development).
Transports raise EmailDeliveryError on failure; callers on the auth path
catch and log it.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from budgetapp.core.config import settings
from budgetapp.core.exceptions import EmailDeliveryError
from budgetapp.core.utils import mask_email

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailProvider(Protocol):
    async def send_message(self, to_email: str, subject: str, html: str, text: str) -> SendResult:
        ...

    async def close(self) -> None:
        ...


class SendGridProvider:
    """SendGrid transactional email sender."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM
        self.from_name = from_name or settings.EMAIL_FROM_NAME
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send_message(self, to_email: str, subject: str, html: str, text: str) -> SendResult:
        http = await self._get_http_client()

        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
        }

        try:
            resp = await http.post(f"{self.BASE_URL}/mail/send", json=payload)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(
                "SendGrid request failed",
                details={"reason": type(e).__name__},
            ) from e

        if resp.status_code not in (200, 202):
            raise EmailDeliveryError(
                "SendGrid rejected the message",
                details={"status_code": resp.status_code},
            )

        return SendResult(success=True, message_id=resp.headers.get("X-Message-Id"))


class ConsoleProvider:
    """
    Fallback transport: writes the message to the log.

    The body (which carries codes) is only logged in development.
    """

    def __init__(self, include_body: bool = False):
        self.include_body = include_body

    async def send_message(self, to_email: str, subject: str, html: str, text: str) -> SendResult:
        if not self.include_body:
            logger.warning(f"Email not delivered (no provider configured): {subject!r} to {mask_email(to_email)}")
            return SendResult(success=False, error="Email service not configured")

        logger.info(
            "\n=== EMAIL (console provider) ===\n"
            f"To: {to_email}\n"
            f"Subject: {subject}\n\n"
            f"{text}\n"
            "================================"
        )
        return SendResult(success=True, message_id="console")

    async def close(self) -> None:
        return None


def build_email_provider() -> EmailProvider:
    """SendGrid when an API key is configured, console otherwise."""
    if settings.SENDGRID_API_KEY:
        return SendGridProvider()
    if not settings.is_development:
        logger.warning("SENDGRID_API_KEY not configured; auth emails will not be delivered")
    return ConsoleProvider(include_body=settings.is_development)
