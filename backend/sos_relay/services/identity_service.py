"""Auth0 Management API client for admin credentials and the super-admin marker."""

from typing import Any
from urllib.parse import quote, urlunparse

import httpx
import structlog
from opentelemetry.trace import SpanKind

from sos_relay.core.config import settings
from sos_relay.core.errors import IdentityProviderError
from sos_relay.core.telemetry import service_span
from sos_relay.utils.pii import hash_pii

logger = structlog.get_logger(__name__)


class IdentityService:
    """
    Thin wrapper over the Auth0 Management API v2.

    Every failure (missing management token, transport error, non-2xx reply)
    surfaces as ``IdentityProviderError``.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self.domain = settings.AUTH0_DOMAIN
        self.token = settings.AUTH0_MANAGEMENT_TOKEN
        self.connection = settings.AUTH0_DB_CONNECTION
        self.timeout = settings.AUTH0_MANAGEMENT_TIMEOUT
        self.client = client

    def _url(self, path: str) -> str:
        return urlunparse(("https", self.domain, f"/api/v2/{path}", "", "", ""))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        if not self.token:
            raise IdentityProviderError("Identity provider management access is not configured")

        headers = {"Authorization": f"Bearer {self.token}"}
        with service_span(f"identity.{method.lower()}", "auth0", kind=SpanKind.CLIENT) as span:
            span.set_attribute("http.route", path.split("/")[0])
            try:
                if self.client is not None:
                    response = await self.client.request(
                        method, self._url(path), json=json, params=params, headers=headers, timeout=self.timeout
                    )
                else:
                    async with httpx.AsyncClient() as client:
                        response = await client.request(
                            method, self._url(path), json=json, params=params, headers=headers, timeout=self.timeout
                        )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(
                    "identity_provider_rejected",
                    method=method,
                    status_code=e.response.status_code,
                    response=e.response.text[:500],
                )
                raise IdentityProviderError(f"Identity provider rejected request: HTTP {e.response.status_code}") from e
            except httpx.HTTPError as e:
                logger.error("identity_provider_unreachable", method=method, error=str(e))
                raise IdentityProviderError(f"Identity provider unreachable: {e!s}") from e
            return response

    async def create_user(self, email: str, password: str) -> str:
        """
        Create a database-connection user.

        Returns:
            The identity-provider user id
        """
        response = await self._request(
            "POST",
            "users",
            json={
                "email": email,
                "password": password,
                "connection": self.connection,
                "email_verified": False,
            },
        )
        user_id = response.json().get("user_id")
        if not user_id:
            raise IdentityProviderError("Identity provider did not return a user id")
        logger.info("identity_user_created", email_hash=hash_pii(email))
        return str(user_id)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"users/{quote(user_id, safe='')}")
        logger.info("identity_user_deleted")

    async def find_user_by_email(self, email: str) -> str | None:
        """Return the user id registered for an email, if any."""
        response = await self._request("GET", "users-by-email", params={"email": email})
        users = response.json()
        if not users:
            return None
        return str(users[0].get("user_id"))

    async def grant_superadmin_marker(self, subject: str) -> None:
        """Set ``app_metadata.<superadmin claim> = true``. Idempotent."""
        await self._request(
            "PATCH",
            f"users/{quote(subject, safe='')}",
            json={"app_metadata": {settings.AUTH0_SUPERADMIN_CLAIM: True}},
        )
