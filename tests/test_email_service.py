"""
Tests for auth email rendering and the email transports.
"""
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from budgetapp.core.exceptions import EmailDeliveryError
from budgetapp.services.auth_email_service import AuthEmailService, EmailKind
from budgetapp.services.email_provider import ConsoleProvider, SendGridProvider, SendResult


@pytest.fixture
def provider() -> AsyncMock:
    provider = AsyncMock()
    provider.send_message = AsyncMock(return_value=SendResult(success=True, message_id="m-1"))
    return provider


class TestAuthEmailService:

    @pytest.mark.asyncio
    async def test_verification_email_carries_code(self, provider):
        service = AuthEmailService(provider=provider)

        await service.send("a@x.com", EmailKind.OTP_EMAIL_VERIFICATION, {"code": "123456"})

        to_email, subject, html_body, text_body = provider.send_message.call_args.args
        assert to_email == "a@x.com"
        assert subject.startswith("Verify your email")
        assert "123456" in html_body
        assert "123456" in text_body
        assert "10 minutes" in text_body

    @pytest.mark.asyncio
    async def test_reset_email_subject(self, provider):
        service = AuthEmailService(provider=provider)

        await service.send("a@x.com", EmailKind.OTP_PASSWORD_RESET, {"code": "654321", "expire_minutes": 10})

        subject = provider.send_message.call_args.args[1]
        assert subject.startswith("Reset your password")

    @pytest.mark.asyncio
    async def test_welcome_email_escapes_name(self, provider):
        service = AuthEmailService(provider=provider)

        await service.send("a@x.com", EmailKind.WELCOME, {"name": "<b>Alice</b>"})

        html_body = provider.send_message.call_args.args[2]
        assert "&lt;b&gt;Alice&lt;/b&gt;" in html_body
        assert "<b>Alice</b>" not in html_body

    @pytest.mark.asyncio
    async def test_unsuccessful_send_raises(self, provider):
        provider.send_message.return_value = SendResult(success=False, error="Email service not configured")
        service = AuthEmailService(provider=provider)

        with pytest.raises(EmailDeliveryError):
            await service.send("a@x.com", EmailKind.WELCOME, {"name": "Alice"})


class TestSendGridProvider:

    @pytest.mark.asyncio
    async def test_accepted_message(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(202, headers={"X-Message-Id": "sg-1"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = SendGridProvider(api_key="SG.test", from_email="noreply@x.com", from_name="Budget", http_client=client)

        result = await provider.send_message("a@x.com", "Subject", "<p>hi</p>", "hi")
        await provider.close()

        assert result.success
        assert result.message_id == "sg-1"
        assert captured["url"] == "https://api.sendgrid.com/v3/mail/send"
        assert captured["body"]["personalizations"] == [{"to": [{"email": "a@x.com"}]}]
        assert captured["body"]["from"] == {"email": "noreply@x.com", "name": "Budget"}

    @pytest.mark.asyncio
    async def test_rejected_message_raises(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(401)))
        provider = SendGridProvider(api_key="SG.bad", http_client=client)

        with pytest.raises(EmailDeliveryError) as exc_info:
            await provider.send_message("a@x.com", "Subject", "<p>hi</p>", "hi")
        await provider.close()

        assert exc_info.value.details == {"status_code": 401}

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = SendGridProvider(api_key="SG.test", http_client=client)

        with pytest.raises(EmailDeliveryError):
            await provider.send_message("a@x.com", "Subject", "<p>hi</p>", "hi")
        await provider.close()


class TestConsoleProvider:

    @pytest.mark.asyncio
    async def test_development_console_logs_message(self, caplog):
        caplog.set_level("INFO", logger="budgetapp.services.email_provider")

        result = await ConsoleProvider(include_body=True).send_message("a@x.com", "Subject", "<p>123456</p>", "123456")

        assert result.success
        assert "123456" in caplog.text

    @pytest.mark.asyncio
    async def test_production_console_does_not_log_body(self, caplog):
        caplog.set_level("INFO", logger="budgetapp.services.email_provider")

        result = await ConsoleProvider(include_body=False).send_message("a@x.com", "Subject", "<p>123456</p>", "123456")

        assert not result.success
        assert "123456" not in caplog.text
