"""Bearer-token authentication against the identity provider (Auth0)."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlunparse

import httpx
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from sos_relay.core.config import require_config, settings
from sos_relay.core.errors import IdentityProviderError, UnauthorizedError
from sos_relay.utils.pii import hash_optional_pii

require_config("AUTH0_DOMAIN", "AUTH0_API_AUDIENCE", "AUTH0_ALGORITHMS")

logger = structlog.get_logger(__name__)

# auto_error=False: a missing header must be a 401, not FastAPI's default 403
security = HTTPBearer(auto_error=False)

# Mock JWKS for DEBUG mode (populated by tests)
_mock_jwks: dict[str, Any] | None = None

# JWKS cache (JSON Web Key Set from Auth0)
_jwks_cache: dict[str, Any] | None = None
_jwks_cache_time: datetime | None = None
_jwks_cache_ttl = timedelta(hours=1)

REQUIRED_JWK_FIELDS = ("kty", "kid", "use", "n", "e")


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller.

    The super-admin predicate is computed from configuration on every access,
    never stored on the principal.
    """

    subject: str
    email: str | None
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_superadmin(self) -> bool:
        return settings.is_superadmin_email(self.email)

    @property
    def has_superadmin_marker(self) -> bool:
        return self.claims.get(settings.AUTH0_SUPERADMIN_CLAIM) is True


def set_mock_jwks(jwks: dict[str, Any]) -> None:
    """
    Set mock JWKS for DEBUG mode testing.

    Raises:
        RuntimeError: If called when DEBUG=False
    """
    if not settings.DEBUG:
        msg = "set_mock_jwks() can only be called in DEBUG mode"
        raise RuntimeError(msg)
    global _mock_jwks  # noqa: PLW0603
    _mock_jwks = jwks


def clear_jwks_cache() -> None:
    """Forget the cached JWKS so the next verification refetches it."""
    global _jwks_cache, _jwks_cache_time  # noqa: PLW0603
    _jwks_cache = None
    _jwks_cache_time = None


async def get_jwks(domain: str) -> dict[str, Any]:
    """
    Fetch the JWKS from Auth0, cached for one hour.

    Args:
        domain: Auth0 domain (e.g., 'your-tenant.auth0.com')

    Returns:
        JWKS dictionary containing public keys

    Raises:
        IdentityProviderError: If JWKS cannot be fetched
    """
    global _jwks_cache, _jwks_cache_time  # noqa: PLW0603

    now = datetime.now(UTC)
    if (
        _jwks_cache is not None
        and "keys" in _jwks_cache
        and _jwks_cache_time is not None
        and now - _jwks_cache_time < _jwks_cache_ttl
    ):
        return _jwks_cache

    try:
        async with httpx.AsyncClient() as client:
            jwks_url = urlunparse(("https", domain, "/.well-known/jwks.json", "", "", ""))
            response = await client.get(jwks_url, timeout=10.0)
            response.raise_for_status()
            _jwks_cache = response.json()
            _jwks_cache_time = now
            return _jwks_cache
    except httpx.HTTPError as e:
        raise IdentityProviderError(f"Unable to fetch JWKS from Auth0: {e!s}") from e


async def _resolve_jwks() -> dict[str, Any]:
    if settings.DEBUG:
        if _mock_jwks is None:
            raise UnauthorizedError("Mock JWKS not configured for DEBUG mode")
        return _mock_jwks
    return await get_jwks(settings.AUTH0_DOMAIN)


async def verify_jwt(token: str) -> dict[str, Any]:
    """
    Verify an RS256 JWT and return its claims.

    Args:
        token: Raw bearer token

    Returns:
        JWT payload dictionary containing claims (e.g., 'sub', 'iat', 'exp')

    Raises:
        UnauthorizedError: If the token is malformed, unsigned by a known key, or expired
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise UnauthorizedError(f"Invalid authentication credentials: {e!s}") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise UnauthorizedError("Token missing 'kid' in header")

    jwks = await _resolve_jwks()
    matching_key = next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)
    if not matching_key:
        raise UnauthorizedError("Unable to find appropriate signing key")

    if missing := [name for name in REQUIRED_JWK_FIELDS if name not in matching_key]:
        raise UnauthorizedError(f"JWKS key is missing required fields: {', '.join(missing)}")

    rsa_key = {name: matching_key[name] for name in REQUIRED_JWK_FIELDS}
    issuer = urlunparse(("https", settings.AUTH0_DOMAIN, "/", "", "", ""))
    try:
        return jwt.decode(
            token,
            rsa_key,
            algorithms=settings.AUTH0_ALGORITHMS,
            audience=settings.AUTH0_API_AUDIENCE,
            issuer=issuer,
        )
    except JWTError as e:
        raise UnauthorizedError(f"Invalid authentication credentials: {e!s}") from e


async def _ensure_superadmin_marker(principal: Principal) -> None:
    """
    Grant the super-admin marker at the identity provider when it is missing.

    The grant is idempotent. Authorization never depends on it, so a failed
    grant is logged and the request carries on.
    """
    if not principal.is_superadmin or principal.has_superadmin_marker:
        return

    from sos_relay.services.identity_service import IdentityService  # noqa: PLC0415

    try:
        await IdentityService().grant_superadmin_marker(principal.subject)
        logger.info("superadmin_marker_granted", email_hash=hash_optional_pii(principal.email))
    except IdentityProviderError as e:
        logger.warning(
            "superadmin_marker_grant_failed",
            email_hash=hash_optional_pii(principal.email),
            error=str(e),
        )


async def authenticate(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """
    Resolve the bearer credential to a principal.

    Raises:
        UnauthorizedError: If the header is missing or malformed, or the token is invalid
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthorizedError("Missing or malformed Authorization header")

    payload = await verify_jwt(credentials.credentials)

    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedError("Token missing 'sub' claim")

    email = payload.get(settings.AUTH0_EMAIL_CLAIM)
    principal = Principal(
        subject=subject,
        email=email.strip().lower() if isinstance(email, str) and email.strip() else None,
        claims=payload,
    )
    await _ensure_superadmin_marker(principal)
    return principal
