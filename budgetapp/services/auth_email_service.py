"""
Auth Email Service

Renders the authentication emails (verification code, password reset code,
welcome) and hands them to the configured transport. Implements the
EmailSender contract consumed by OtpService and AuthService:

    await sender.send(to, EmailKind.OTP_PASSWORD_RESET, {"code": "123456"})

send() may raise EmailDeliveryError. Callers on the auth path catch it.
"""
import enum
import html
import logging
from typing import Any, Dict, Optional, Protocol

from budgetapp.core.config import settings
from budgetapp.core.exceptions import EmailDeliveryError
from budgetapp.core.utils import mask_email
from budgetapp.services.email_provider import EmailProvider, SendResult, build_email_provider

logger = logging.getLogger(__name__)


class EmailKind(str, enum.Enum):
    OTP_EMAIL_VERIFICATION = "OTP_EMAIL_VERIFICATION"
    OTP_PASSWORD_RESET = "OTP_PASSWORD_RESET"
    WELCOME = "WELCOME"


class EmailSender(Protocol):
    async def send(self, to: str, kind: EmailKind, payload: Dict[str, Any]) -> None:
        ...


_OTP_COPY = {
    EmailKind.OTP_EMAIL_VERIFICATION: (
        "Verify your email",
        "Use this code to verify your email address and finish creating your account.",
    ),
    EmailKind.OTP_PASSWORD_RESET: (
        "Reset your password",
        "Use this code to reset your password. If you did not ask for this, you can ignore this email.",
    ),
}


class AuthEmailService:
    """Renders and sends authentication emails."""

    def __init__(self, provider: Optional[EmailProvider] = None):
        self.provider = provider or build_email_provider()
        self.app_name = settings.APP_NAME
        self.app_url = settings.APP_URL

    async def send(self, to: str, kind: EmailKind, payload: Dict[str, Any]) -> None:
        if kind in _OTP_COPY:
            subject, html_body, text_body = self._render_otp(kind, payload)
        elif kind == EmailKind.WELCOME:
            subject, html_body, text_body = self._render_welcome(payload)
        else:  # pragma: no cover - closed enum
            raise ValueError(f"Unknown email kind: {kind}")

        result: SendResult = await self.provider.send_message(to, subject, html_body, text_body)
        if not result.success:
            raise EmailDeliveryError(
                result.error or "Email was not sent",
                details={"kind": kind.value},
            )
        logger.info(f"{kind.value} email sent to {mask_email(to)}")

    async def close(self) -> None:
        await self.provider.close()

    def _render_otp(self, kind: EmailKind, payload: Dict[str, Any]):
        title, intro = _OTP_COPY[kind]
        code = str(payload["code"])
        expire_minutes = payload.get("expire_minutes", settings.OTP_EXPIRY_MINUTES)

        subject = f"{title} - {self.app_name}"
        text_body = (
            f"{title}\n\n"
            f"{intro}\n\n"
            f"Your code: {code}\n\n"
            f"The code expires in {expire_minutes} minutes. Never share it with anyone."
        )
        html_body = self._wrap_html(
            title,
            f"<p>{html.escape(intro)}</p>"
            f"<p style=\"font-size:32px;letter-spacing:8px;font-weight:bold\">{html.escape(code)}</p>"
            f"<p>The code expires in {int(expire_minutes)} minutes. Never share it with anyone.</p>",
        )
        return subject, html_body, text_body

    def _render_welcome(self, payload: Dict[str, Any]):
        name = str(payload.get("name") or "there")
        dashboard_url = f"{self.app_url}/dashboard"

        subject = f"Welcome to {self.app_name}!"
        text_body = (
            f"Hello {name},\n\n"
            f"Thank you for joining {self.app_name}. Track expenses, manage assets "
            f"and liabilities, and view reports from your dashboard:\n{dashboard_url}"
        )
        html_body = self._wrap_html(
            f"Welcome to {self.app_name}!",
            f"<p>Hello {html.escape(name)},</p>"
            f"<p>Thank you for joining {html.escape(self.app_name)}. Track expenses, manage assets "
            f"and liabilities, and view reports from your dashboard.</p>"
            f"<p><a href=\"{html.escape(dashboard_url)}\">Get started</a></p>",
        )
        return subject, html_body, text_body

    def _wrap_html(self, title: str, body: str) -> str:
        return (
            "<!DOCTYPE html><html lang=\"en\"><head><meta charset=\"UTF-8\">"
            f"<title>{html.escape(title)}</title></head>"
            "<body style=\"font-family:-apple-system,Segoe UI,Roboto,Arial,sans-serif;"
            "color:#333;max-width:600px;margin:0 auto;padding:20px\">"
            f"<h1>{html.escape(title)}</h1>{body}"
            f"<p style=\"font-size:12px;color:#999\">{html.escape(self.app_name)}</p>"
            "</body></html>"
        )
