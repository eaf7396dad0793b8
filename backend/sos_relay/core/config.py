"""Application configuration."""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(v: str | list[str]) -> list[str]:
    """Split a comma-separated string into stripped, non-empty items."""
    if isinstance(v, list):
        return [item for item in v if item]
    return [item.strip() for item in v.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Settings
    PROJECT_NAME: str = "SOS Relay"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "*"

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def parse_cors(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated CORS origins or pass through list."""
        return _split_csv(v)

    # Database Settings
    DATABASE_URL: str = Field(validation_alias="SECRET_DATABASE_URL")
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 5  # Connection pool size for worker engine
    DATABASE_MAX_OVERFLOW: int = 10  # Max overflow connections for worker engine

    # Redis Settings (sweeper non-overlap lock)
    REDIS_URL: str = Field(validation_alias="SECRET_REDIS_URL")

    # Auth0 Settings
    AUTH0_DOMAIN: str
    AUTH0_API_AUDIENCE: str
    AUTH0_ALGORITHMS: str = "RS256"
    AUTH0_EMAIL_CLAIM: str = "email"  # Namespaced custom claims are common, e.g. "https://sos-relay/email"
    AUTH0_SUPERADMIN_CLAIM: str = "superadmin"
    AUTH0_DB_CONNECTION: str = "Username-Password-Authentication"
    AUTH0_MANAGEMENT_TOKEN: str | None = Field(default=None, validation_alias="SECRET_AUTH0_MANAGEMENT_TOKEN")
    AUTH0_MANAGEMENT_TIMEOUT: float = 10.0

    @field_validator("AUTH0_ALGORITHMS", mode="after")
    @classmethod
    def parse_auth0_algorithms(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated Auth0 algorithms or pass through list."""
        return _split_csv(v)

    # Fixed super-admin allow-list (never stored as admin accounts)
    SUPERADMIN_EMAILS: str = ""

    @field_validator("SUPERADMIN_EMAILS", mode="after")
    @classmethod
    def parse_superadmin_emails(cls, v: str | list[str]) -> frozenset[str]:
        """Parse comma-separated super-admin emails into a lower-cased frozenset."""
        return frozenset(email.lower() for email in _split_csv(v))

    # Push Settings
    PUSH_PROVIDER: str = "fcm"  # "fcm" sends via FCM HTTP v1, "log" only logs the message
    FCM_PROJECT_ID: str | None = None
    # Service account key JSON; short-lived OAuth2 access tokens are minted from it
    FCM_SERVICE_ACCOUNT_JSON: str | None = Field(default=None, validation_alias="SECRET_FCM_SERVICE_ACCOUNT")
    PUSH_TIMEOUT_SECONDS: float = 10.0

    @field_validator("PUSH_PROVIDER", mode="after")
    @classmethod
    def validate_push_provider(cls, v: str) -> str:
        """Validate and normalize push provider name."""
        normalized = v.lower()
        if normalized not in {"fcm", "log"}:
            msg = f"Invalid PUSH_PROVIDER '{v}'. Must be one of: fcm, log"
            raise ValueError(msg)
        return normalized

    # Test push defaults
    TEST_PUSH_DEFAULT_DISTRICT: str = "udupi"

    # Email Settings (welcome email for new admins)
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USER: str | None = Field(default=None, validation_alias="SECRET_SMTP_USER")
    SMTP_PASSWORD: str | None = Field(default=None, validation_alias="SECRET_SMTP_PASSWORD")
    SMTP_FROM_EMAIL: str | None = Field(default=None, validation_alias="SECRET_SMTP_FROM_EMAIL")
    SMTP_TIMEOUT: int = 10  # Connection timeout in seconds (prevents indefinite hangs)
    SMTP_REQUIRE_TLS: bool = False  # If True, require STARTTLS upgrade on ports 25/587
    ADMIN_DASHBOARD_URL: str | None = None

    # Celery Settings
    CELERY_BROKER_URL: str = Field(validation_alias="SECRET_CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND: str = Field(validation_alias="SECRET_CELERY_RESULT_BACKEND")

    # SOS Expiry Settings
    SOS_EXPIRY_THRESHOLD_MINUTES: int = Field(default=60, gt=0)
    SOS_EXPIRY_CRON_MINUTE: str = "0"
    SOS_EXPIRY_CRON_HOUR: str = "*"
    SOS_EXPIRY_TIMEZONE: str = "Asia/Kolkata"

    @field_validator("SOS_EXPIRY_TIMEZONE", mode="after")
    @classmethod
    def validate_expiry_timezone(cls, v: str) -> str:
        """Ensure the sweeper timezone is a valid IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Invalid SOS_EXPIRY_TIMEZONE '{v}'"
            raise ValueError(msg) from e
        return v

    # PII Hashing Settings
    PII_HASH_SECRET: str = Field(
        validation_alias="SECRET_PII_HASH"
    )  # Secret key for HMAC-SHA256 hashing of PII in logs/telemetry

    @field_validator("PII_HASH_SECRET", mode="after")
    @classmethod
    def validate_pii_hash_secret(cls, v: str) -> str:
        """Ensure SECRET_PII_HASH meets minimum security requirements."""
        min_length = 32  # Minimum characters for cryptographic security
        if len(v) < min_length:
            msg = f"SECRET_PII_HASH must be at least {min_length} characters long for security"
            raise ValueError(msg)
        if v == "REPLACE_ME_WITH_RANDOM_SECRET":
            msg = (
                "SECRET_PII_HASH is set to placeholder value. "
                'Generate a secure secret using: python3 -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
            raise ValueError(msg)
        return v

    # Alembic Settings
    ALEMBIC_INI_PATH: str = "alembic.ini"

    # OpenTelemetry Settings (for observability)
    OTEL_ENABLED: bool = True
    OTEL_SERVICE_NAME: str = "sos-relay-backend"
    OTEL_ENVIRONMENT: str = "production"

    # OTLP Exporter Endpoints (separate for traces and logs)
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_LOGS_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None, validation_alias="SECRET_OTEL_HEADERS")
    OTEL_EXCLUDED_URLS: str = "/health"

    # Log level for OTLP log export (NOTSET exports all levels)
    OTEL_LOG_LEVEL: str = "NOTSET"

    @field_validator("OTEL_EXCLUDED_URLS", mode="after")
    @classmethod
    def parse_otel_excluded_urls(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated excluded URLs or pass through list, filtering out empty strings."""
        return _split_csv(v)

    @field_validator("OTEL_LOG_LEVEL", "LOG_LEVEL", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log levels."""
        normalized = v.upper()
        valid_levels = logging.getLevelNamesMapping()
        if normalized not in valid_levels:
            msg = f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(valid_levels.keys()))}"
            raise ValueError(msg)
        return normalized

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    def is_superadmin_email(self, email: str | None) -> bool:
        """Check an email against the fixed super-admin allow-list."""
        return bool(email) and email.strip().lower() in self.SUPERADMIN_EMAILS  # type: ignore[operator]


settings = Settings()


def require_config(*field_names: str) -> None:
    """
    Validate that required configuration fields are set.

    This utility should be called by modules on import to verify their
    required configuration is present.

    Args:
        *field_names: Names of required configuration fields

    Raises:
        ValueError: If any required field is missing or None

    Example:
        from sos_relay.core.config import require_config, settings
        require_config("AUTH0_DOMAIN", "AUTH0_API_AUDIENCE")
    """
    missing = []
    for field in field_names:
        value = getattr(settings, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)

    if missing:
        msg = f"Required configuration missing: {', '.join(missing)}"
        raise ValueError(msg)
