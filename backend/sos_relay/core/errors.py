"""Error taxonomy for the relay.

Every error is an ``HTTPException`` so services can raise them directly and
FastAPI renders the status code without per-route translation. The Celery
sweeper raises the same types; there the status code is informational.
"""

from fastapi import HTTPException, status


class RelayError(HTTPException):
    """Base class for relay errors with a fixed status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(status_code=type(self).status_code, detail=detail, headers=headers)

    def __str__(self) -> str:
        return str(self.detail)


class ValidationError(RelayError):
    """Missing or malformed required field. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(RelayError):
    """Missing, malformed, invalid or expired credential."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str) -> None:
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(RelayError):
    """Blocked sender, inactive or unknown admin, or non-super-admin caller."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(RelayError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(RelayError):
    status_code = status.HTTP_409_CONFLICT


class DeliveryError(RelayError):
    """The push provider rejected or failed the fan-out call."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageError(RelayError):
    """The database failed a read or write."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class IdentityProviderError(RelayError):
    """The identity provider management API failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
