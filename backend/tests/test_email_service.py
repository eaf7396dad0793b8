"""Tests for email service."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from sos_relay.core.config import settings
from sos_relay.services.email_service import WELCOME_SUBJECT, EmailService, get_tls_settings


class TestGetTlsSettings:
    @pytest.mark.parametrize(
        ("port", "require_tls", "expected"),
        [
            # Port 465 uses implicit TLS regardless of require_tls
            (465, False, (True, None)),
            (465, True, (True, None)),
            (587, False, (False, None)),
            (587, True, (False, True)),
            (25, False, (False, None)),
            (25, True, (False, True)),
        ],
    )
    def test_get_tls_settings(self, port: int, require_tls: bool, expected: tuple[bool, bool | None]) -> None:
        assert get_tls_settings(port, require_tls) == expected


class TestEmailService:
    def test_missing_smtp_config_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "SMTP_HOST", None)

        with pytest.raises(ValueError, match="SMTP_HOST"):
            EmailService()

    @patch("sos_relay.services.email_service.aiosmtplib.SMTP")
    async def test_send_welcome_email(self, mock_smtp_class: MagicMock) -> None:
        mock_server = AsyncMock()
        mock_smtp_class.return_value.__aenter__.return_value = mock_server

        service = EmailService()
        await service.send_welcome_email("new.admin@example.com", ["udupi", "dakshina_kannada"])

        mock_server.login.assert_awaited_once_with("mailer", "mailer-password")
        message = mock_server.send_message.call_args[0][0]
        assert message["To"] == "new.admin@example.com"
        assert message["Subject"] == WELCOME_SUBJECT
        assert message["From"] == "noreply@example.com"

        html = message.get_body(preferencelist=("html",)).get_content()
        text = message.get_body(preferencelist=("plain",)).get_content()
        assert "Dakshina Kannada" in html
        assert "Assigned districts: Udupi, Dakshina Kannada" in text

    @patch("sos_relay.services.email_service.aiosmtplib.SMTP")
    async def test_welcome_email_without_districts(self, mock_smtp_class: MagicMock) -> None:
        mock_server = AsyncMock()
        mock_smtp_class.return_value.__aenter__.return_value = mock_server

        await EmailService().send_welcome_email("new.admin@example.com", [])

        message = mock_server.send_message.call_args[0][0]
        assert "Assigned districts: none yet" in message.get_body(preferencelist=("plain",)).get_content()

    @patch("sos_relay.services.email_service.aiosmtplib.SMTP")
    async def test_uses_starttls_settings(self, mock_smtp_class: MagicMock, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "SMTP_REQUIRE_TLS", True)
        mock_smtp_class.return_value.__aenter__.return_value = AsyncMock()

        await EmailService().send_welcome_email("new.admin@example.com", ["udupi"])

        kwargs = mock_smtp_class.call_args.kwargs
        assert kwargs["hostname"] == "smtp.sos-relay.test"
        assert kwargs["use_tls"] is False
        assert kwargs["start_tls"] is True

    @pytest.mark.parametrize(
        "error",
        [aiosmtplib.SMTPException("rejected"), TimeoutError("timed out"), OSError("network unreachable")],
    )
    @patch("sos_relay.services.email_service.aiosmtplib.SMTP")
    async def test_send_failures_propagate(self, mock_smtp_class: MagicMock, error: Exception) -> None:
        mock_server = AsyncMock()
        mock_server.send_message.side_effect = error
        mock_smtp_class.return_value.__aenter__.return_value = mock_server

        with pytest.raises(type(error)):
            await EmailService().send_welcome_email("new.admin@example.com", ["udupi"])
