"""Push fan-out to district topics.

Delivery is at-most-once: one provider call per transition, no retries here.
Two providers are supported:

* ``fcm``: Firebase Cloud Messaging HTTP v1 (``messages:send``) over httpx,
  authorized with OAuth2 access tokens minted from a service account
* ``log``: logs the message and returns a synthetic id (local development)
"""

import asyncio
import json
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

import google.auth.exceptions
import google.auth.transport.requests
import httpx
import structlog
from google.oauth2 import service_account
from opentelemetry.trace import SpanKind

from sos_relay.core.config import settings
from sos_relay.core.errors import DeliveryError
from sos_relay.core.telemetry import service_span

logger = structlog.get_logger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
FCM_SCOPES = ("https://www.googleapis.com/auth/firebase.messaging",)

MessageType = Literal["sos_alert", "sos_resolved"]

ALERT_TITLE = "🚨 Emergency Alert"
RESOLVED_TITLE = "✅ Emergency Resolved"
TEST_TITLE = "🧪 Test Emergency Alert"

ANDROID_CHANNEL_ID = "sos_alerts"
ANDROID_ICON = "ic_notification"
ALERT_COLOR = "#FF0000"
RESOLVED_COLOR = "#00FF00"


def topic_for_district(district: str) -> str:
    """Channel key for a district."""
    return f"district-{district}"


def humanize_district(district: str) -> str:
    """
    Turn a district key into a display label.

    Example:
        >>> humanize_district("dakshina_kannada")
        'Dakshina Kannada'
    """
    return " ".join(word.capitalize() for word in district.replace("_", " ").split())


@dataclass(frozen=True)
class PushMessage:
    """Provider-neutral push message addressed to one topic."""

    topic: str
    title: str
    body: str
    data: dict[str, str]
    color: str = ALERT_COLOR
    badge: int = 1
    apns_body: str | None = None

    def to_fcm(self) -> dict[str, Any]:
        """
        Render the FCM HTTP v1 request body.

        High priority on Android and ``apns-priority: 10`` on iOS get the
        message through Doze and low-power modes.
        """
        return {
            "message": {
                "topic": self.topic,
                "notification": {"title": self.title, "body": self.body},
                "data": self.data,
                "android": {
                    "priority": "high",
                    "notification": {
                        "channel_id": ANDROID_CHANNEL_ID,
                        "icon": ANDROID_ICON,
                        "color": self.color,
                        "sound": "default",
                        "default_sound": True,
                        "notification_priority": "PRIORITY_HIGH",
                    },
                },
                "apns": {
                    "headers": {"apns-priority": "10"},
                    "payload": {
                        "aps": {
                            "content-available": 1,
                            "alert": {"title": self.title, "body": self.apns_body or self.body},
                            "sound": "default",
                            "badge": self.badge,
                        }
                    },
                },
            }
        }


@dataclass(frozen=True)
class AlertContent:
    """Inputs shared by alert and resolution messages."""

    sender_id: str
    district: str
    timestamp: str
    reporter_name: str | None = None
    place_name: str | None = None
    location: dict[str, Any] | None = None
    user_info: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.reporter_name or "Someone"

    @property
    def display_place(self) -> str:
        return self.place_name or humanize_district(self.district)


def build_alert_message(content: AlertContent) -> PushMessage:
    """Build the ``sos_alert`` fan-out message."""
    return PushMessage(
        topic=topic_for_district(content.district),
        title=ALERT_TITLE,
        body=f"Help needed. {content.display_name} • {content.display_place}",
        data={
            "type": "sos_alert",
            "sender_id": content.sender_id,
            "district": content.district,
            "location": json.dumps(content.location or {}),
            "timestamp": content.timestamp,
            "userInfo": json.dumps(content.user_info),
        },
        color=ALERT_COLOR,
        badge=1,
    )


def build_resolved_message(content: AlertContent) -> PushMessage:
    """Build the ``sos_resolved`` fan-out message (no location or user payload)."""
    return PushMessage(
        topic=topic_for_district(content.district),
        title=RESOLVED_TITLE,
        body=f"All good now. {content.display_name} • {content.display_place}",
        data={
            "type": "sos_resolved",
            "sender_id": content.sender_id,
            "district": content.district,
            "timestamp": content.timestamp,
        },
        color=RESOLVED_COLOR,
        badge=0,
    )


def build_test_message(content: AlertContent) -> PushMessage:
    """
    Build a diagnostic ``sos_alert`` message.

    Subscribers handle it like a real alert, so only the notification text
    marks it as a test.
    """
    alert = build_alert_message(content)
    return PushMessage(
        topic=alert.topic,
        title=TEST_TITLE,
        body=f"Test alert. {content.display_name} • {content.display_place}",
        data=alert.data,
        color=ALERT_COLOR,
        badge=1,
        apns_body=f"Test SOS alert in {content.district.upper()} area",
    )


class FcmTokenSource:
    """
    OAuth2 access tokens for FCM, minted from service account credentials.

    FCM HTTP v1 only accepts short-lived tokens (about an hour). The token is
    cached on the credentials and refreshed once google-auth reports it
    expired or close to expiry.
    """

    def __init__(self, credentials: service_account.Credentials) -> None:
        self.credentials = credentials
        self._lock = threading.Lock()

    @classmethod
    def from_service_account_json(cls, raw: str) -> "FcmTokenSource":
        """
        Raises:
            ValueError: If the JSON is malformed or not a service account key
        """
        info = json.loads(raw)
        return cls(service_account.Credentials.from_service_account_info(info, scopes=list(FCM_SCOPES)))

    @property
    def project_id(self) -> str | None:
        return self.credentials.project_id

    def _refresh_sync(self) -> str:
        with self._lock:
            if not self.credentials.valid:
                self.credentials.refresh(google.auth.transport.requests.Request())
                logger.info("fcm_access_token_refreshed", expiry=str(self.credentials.expiry))
            return str(self.credentials.token)

    async def token(self) -> str:
        """
        Current access token, refreshed off the event loop when needed.

        Raises:
            DeliveryError: If the token endpoint refuses or cannot be reached
        """
        if self.credentials.valid:
            return str(self.credentials.token)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._refresh_sync)
        except google.auth.exceptions.GoogleAuthError as e:
            logger.error("fcm_access_token_refresh_failed", error=str(e))
            raise DeliveryError("Push provider credentials could not be refreshed") from e


_fcm_token_source: FcmTokenSource | None = None
_fcm_token_source_lock = threading.Lock()


def get_fcm_token_source() -> FcmTokenSource:
    """
    Process-wide token source built from ``SECRET_FCM_SERVICE_ACCOUNT``.

    Raises:
        DeliveryError: If no usable service account is configured
    """
    global _fcm_token_source  # noqa: PLW0603
    if _fcm_token_source is None:
        with _fcm_token_source_lock:
            if _fcm_token_source is None:
                if not settings.FCM_SERVICE_ACCOUNT_JSON:
                    raise DeliveryError("FCM is not configured (SECRET_FCM_SERVICE_ACCOUNT)")
                try:
                    _fcm_token_source = FcmTokenSource.from_service_account_json(settings.FCM_SERVICE_ACCOUNT_JSON)
                except ValueError as e:
                    logger.error("fcm_service_account_invalid", error=str(e))
                    raise DeliveryError("FCM is not configured (invalid service account)") from e
    return _fcm_token_source


class PushService:
    """Sends push messages through the configured provider."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        token_source: FcmTokenSource | None = None,
    ) -> None:
        """
        Initialize the push service.

        Args:
            client: Optional shared HTTP client (a short-lived one is used per send otherwise)
            token_source: FCM access tokens (defaults to the process-wide service account source)
        """
        self.provider = settings.PUSH_PROVIDER
        self.client = client
        self.token_source = token_source

    async def send(self, message: PushMessage) -> str:
        """
        Deliver a message to its topic.

        Args:
            message: Message to send

        Returns:
            Provider message id

        Raises:
            DeliveryError: If the provider rejects the message or cannot be reached
        """
        with service_span(
            "push.send",
            self.provider,
            kind=SpanKind.CLIENT,
        ) as span:
            span.set_attribute("push.topic", message.topic)
            span.set_attribute("push.type", message.data.get("type", "unknown"))

            if self.provider == "log":
                message_id = f"log/{uuid.uuid4().hex}"
                logger.info(
                    "push_logged",
                    topic=message.topic,
                    title=message.title,
                    body=message.body,
                    message_type=message.data.get("type"),
                    message_id=message_id,
                )
            else:
                message_id = await self._send_fcm(message)

            span.set_attribute("push.message_id", message_id)
            return message_id

    async def _send_fcm(self, message: PushMessage) -> str:
        token_source = self.token_source or get_fcm_token_source()
        project_id = settings.FCM_PROJECT_ID or token_source.project_id
        if not project_id:
            raise DeliveryError("FCM is not configured (FCM_PROJECT_ID)")

        url = FCM_SEND_URL.format(project_id=project_id)
        headers = {"Authorization": f"Bearer {await token_source.token()}"}

        try:
            if self.client is not None:
                response = await self.client.post(
                    url, json=message.to_fcm(), headers=headers, timeout=settings.PUSH_TIMEOUT_SECONDS
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        url, json=message.to_fcm(), headers=headers, timeout=settings.PUSH_TIMEOUT_SECONDS
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "push_rejected",
                topic=message.topic,
                status_code=e.response.status_code,
                response=e.response.text[:500],
            )
            raise DeliveryError(f"Push provider rejected message: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("push_transport_failed", topic=message.topic, error=str(e))
            raise DeliveryError(f"Push provider unreachable: {e!s}") from e

        message_id = str(response.json().get("name", ""))
        logger.info("push_sent", topic=message.topic, message_id=message_id)
        return message_id
