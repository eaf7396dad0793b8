"""PII (Personally Identifiable Information) utilities for safe logging."""

import hashlib
import hmac

from sos_relay.core.config import settings


def hash_pii(value: str) -> str:
    """
    Hash a PII value (phone number, email) for logs and span attributes.

    Uses HMAC-SHA256 keyed with ``SECRET_PII_HASH`` so common phone numbers and
    addresses cannot be recovered with a dictionary attack, while the same input
    always maps to the same digest for correlation.

    Args:
        value: Email address or phone number to hash

    Returns:
        64-character lowercase hexadecimal digest

    Raises:
        ValueError: If PII_HASH_SECRET is empty
    """
    if not settings.PII_HASH_SECRET:
        msg = "PII_HASH_SECRET must be configured and non-empty"
        raise ValueError(msg)
    return hmac.new(settings.PII_HASH_SECRET.encode(), value.encode(), hashlib.sha256).hexdigest()


def hash_optional_pii(value: str | None) -> str | None:
    """Hash a PII value that may be missing."""
    return hash_pii(value) if value else None
