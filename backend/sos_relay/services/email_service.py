"""Email service for admin onboarding mail."""

from email.message import EmailMessage
from pathlib import Path

import aiosmtplib
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape
from opentelemetry.trace import SpanKind

from sos_relay.core.config import require_config, settings
from sos_relay.core.telemetry import service_span
from sos_relay.services.push_service import humanize_district
from sos_relay.utils.pii import hash_pii

logger = structlog.get_logger(__name__)

# Standard SMTP port for implicit TLS (SMTPS)
SMTPS_PORT = 465

WELCOME_SUBJECT = "Your SOS Relay admin account"


def get_tls_settings(port: int, require_tls: bool) -> tuple[bool, bool | None]:
    """
    Determine TLS settings based on port and require_tls flag.

    Port 465 always uses implicit TLS. Other ports opportunistically upgrade
    with STARTTLS, or insist on it when ``require_tls`` is set.

    Returns:
        Tuple of (use_tls, start_tls) for aiosmtplib.SMTP
    """
    if port == SMTPS_PORT:
        return (True, None)
    return (False, True if require_tls else None)


# Autoescape protects the HTML templates from injected district names or emails
template_dir = Path(__file__).parent.parent / "templates" / "email"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html", "xml"]),
)


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(self) -> None:
        """
        Initialize the email service.

        Raises:
            ValueError: If SMTP is not configured
        """
        require_config("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "SMTP_FROM_EMAIL")
        assert settings.SMTP_HOST is not None
        assert settings.SMTP_USER is not None
        assert settings.SMTP_PASSWORD is not None
        assert settings.SMTP_FROM_EMAIL is not None

        self.smtp_host: str = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user: str = settings.SMTP_USER
        self.smtp_password: str = settings.SMTP_PASSWORD
        self.from_email: str = settings.SMTP_FROM_EMAIL
        self.smtp_timeout = settings.SMTP_TIMEOUT
        self.require_tls = settings.SMTP_REQUIRE_TLS

    async def send_welcome_email(self, email: str, districts: list[str]) -> None:
        """
        Tell a newly created admin which districts they manage.

        Raises:
            aiosmtplib.SMTPException: If email sending fails
        """
        district_labels = [humanize_district(d) for d in districts]
        template = jinja_env.get_template("welcome.html")
        html_content = template.render(
            email=email,
            districts=district_labels,
            dashboard_url=settings.ADMIN_DASHBOARD_URL,
        )

        districts_line = ", ".join(district_labels) if district_labels else "none yet"
        text_content = f"""
Hello,

An administrator account has been created for {email} on SOS Relay.

Assigned districts: {districts_line}

Sign in with the password shared with you by your super-admin and change it on first login.
{f"Dashboard: {settings.ADMIN_DASHBOARD_URL}" if settings.ADMIN_DASHBOARD_URL else ""}

This is an automated message from SOS Relay.
        """.strip()

        await self._send_email_async(email, WELCOME_SUBJECT, html_content, text_content)
        logger.info("welcome_email_sent", recipient_hash=hash_pii(email), district_count=len(districts))

    async def _send_email_async(
        self,
        to: str,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        """
        Send one multipart email.

        Raises:
            aiosmtplib.SMTPException: If the server rejects the message
            TimeoutError: If the SMTP operation times out
            OSError: On network/socket errors
        """
        recipient_hash = hash_pii(to)

        with service_span("email.send", "smtp", kind=SpanKind.CLIENT) as span:
            span.set_attribute("smtp.host", self.smtp_host)
            span.set_attribute("smtp.port", self.smtp_port)
            span.set_attribute("email.recipient_hash", recipient_hash)
            span.set_attribute("email.subject", subject)
            try:
                message = EmailMessage()
                message["Subject"] = subject
                message["From"] = self.from_email
                message["To"] = to
                message.set_content(text_content)
                message.add_alternative(html_content, subtype="html")

                use_tls, start_tls = get_tls_settings(self.smtp_port, self.require_tls)
                async with aiosmtplib.SMTP(
                    hostname=self.smtp_host,
                    port=self.smtp_port,
                    timeout=self.smtp_timeout,
                    use_tls=use_tls,
                    start_tls=start_tls,
                ) as server:
                    await server.login(self.smtp_user, self.smtp_password)
                    await server.send_message(message)

                logger.info("email_sent", recipient_hash=recipient_hash, subject=subject)
            except TimeoutError as e:
                logger.error("email_send_timeout", recipient_hash=recipient_hash, error=str(e))
                raise
            except aiosmtplib.SMTPException as e:
                logger.error("email_send_failed", recipient_hash=recipient_hash, error=str(e))
                raise
            except OSError as e:
                logger.error("email_send_network_error", recipient_hash=recipient_hash, error=str(e))
                raise
