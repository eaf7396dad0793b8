"""JWT helper utilities for testing."""

import base64
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlunparse

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from sos_relay.core.config import settings


def _int_to_base64url(num: int) -> str:
    byte_length = (num.bit_length() + 7) // 8
    return base64.urlsafe_b64encode(num.to_bytes(byte_length, byteorder="big")).decode().rstrip("=")


class MockJWTGenerator:
    """
    RS256 tokens shaped like Auth0 access tokens.

    One ephemeral key pair per test run; the matching JWKS is installed as the
    DEBUG-mode mock JWKS by conftest.
    """

    _private_key: str | None = None
    _jwks: dict[str, Any] | None = None
    KID = "test-key-1"

    @classmethod
    def _ensure_keys(cls) -> None:
        if cls._private_key is not None:
            return

        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048, backend=default_backend())
        cls._private_key = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()

        public_numbers = private_key.public_key().public_numbers()
        cls._jwks = {
            "keys": [
                {
                    "kty": "RSA",
                    "kid": cls.KID,
                    "use": "sig",
                    "n": _int_to_base64url(public_numbers.n),
                    "e": _int_to_base64url(public_numbers.e),
                }
            ]
        }

    @classmethod
    def generate(
        cls,
        subject: str,
        email: str | None = None,
        expires_in: timedelta = timedelta(days=1),
        audience: str | None = None,
        **extra_claims: Any,  # noqa: ANN401
    ) -> str:
        """
        Sign a token for ``subject``.

        Args:
            subject: ``sub`` claim (usually 'auth0|...')
            email: Value for the configured email claim (omitted when None)
            expires_in: Lifetime; negative values produce an expired token
            audience: Override the configured audience
            **extra_claims: Additional claims, e.g. ``superadmin=True``
        """
        cls._ensure_keys()
        now = datetime.now(UTC)

        payload: dict[str, Any] = {
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
            "aud": audience or settings.AUTH0_API_AUDIENCE,
            "iss": urlunparse(("https", settings.AUTH0_DOMAIN, "/", "", "", "")),
            **extra_claims,
        }
        if email is not None:
            payload[settings.AUTH0_EMAIL_CLAIM] = email

        assert cls._private_key is not None
        return jwt.encode(payload, cls._private_key, algorithm="RS256", headers={"kid": cls.KID})

    @classmethod
    def get_mock_jwks(cls) -> dict[str, Any]:
        cls._ensure_keys()
        assert cls._jwks is not None
        return cls._jwks
