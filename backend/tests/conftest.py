"""Pytest configuration and fixtures."""

import os

# Settings are read at import time: configure the environment before any
# sos_relay import
os.environ["DEBUG"] = "true"
os.environ["OTEL_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SECRET_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_REDIS_URL"] = "redis://localhost:6379/0"
os.environ["SECRET_CELERY_BROKER_URL"] = "redis://localhost:6379/1"
os.environ["SECRET_CELERY_RESULT_BACKEND"] = "redis://localhost:6379/2"
os.environ["AUTH0_DOMAIN"] = "test.auth0.com"
os.environ["AUTH0_API_AUDIENCE"] = "https://api.sos-relay.test"
os.environ["SECRET_PII_HASH"] = "test-pii-hash-secret-at-least-32-characters"
os.environ["SUPERADMIN_EMAILS"] = "root@example.com,Chief@Example.com"
os.environ["PUSH_PROVIDER"] = "log"
os.environ["SMTP_HOST"] = "smtp.sos-relay.test"
os.environ["SECRET_SMTP_USER"] = "mailer"
os.environ["SECRET_SMTP_PASSWORD"] = "mailer-password"
os.environ["SECRET_SMTP_FROM_EMAIL"] = "noreply@example.com"

from collections.abc import AsyncGenerator, Generator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sos_relay.api.sos import get_push_service
from sos_relay.core.auth import clear_jwks_cache, set_mock_jwks
from sos_relay.core.database import get_db
from sos_relay.core.errors import DeliveryError
from sos_relay.main import app
from sos_relay.models import AdminAccount, AdminRole, Base
from sos_relay.services.push_service import PushMessage, PushService
from tests.helpers.factories import ADMIN_EMAIL, SUPERADMIN_EMAIL
from tests.helpers.jwt_helpers import MockJWTGenerator


# ==================== Database ====================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """
    In-memory SQLite engine with the full schema, one per test.

    StaticPool keeps the single connection alive so the in-memory database
    survives between sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


# ==================== Push ====================


class RecordingPushService(PushService):
    """Push service that records messages instead of sending them."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[PushMessage] = []

    async def send(self, message: PushMessage) -> str:
        self.sent.append(message)
        return f"projects/test/messages/{len(self.sent)}"


@pytest.fixture
def push_service() -> RecordingPushService:
    return RecordingPushService()


@pytest.fixture
def failing_push_service() -> PushService:
    service = PushService()
    service.send = AsyncMock(side_effect=DeliveryError("Push provider rejected message: HTTP 503"))  # type: ignore[method-assign]
    return service


# ==================== HTTP client ====================


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    push_service: RecordingPushService,
) -> AsyncGenerator[AsyncClient]:
    """ASGI client sharing the test session and the recording push service."""

    async def override_get_db() -> AsyncGenerator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_service] = lambda: push_service

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


# ==================== Auth ====================


@pytest.fixture(scope="session", autouse=True)
def setup_mock_jwks() -> None:
    """Install the generator's JWKS as the DEBUG-mode key set."""
    set_mock_jwks(MockJWTGenerator.get_mock_jwks())


@pytest.fixture
def reset_jwks_cache() -> Generator[None]:
    clear_jwks_cache()
    yield
    clear_jwks_cache()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def superadmin_headers() -> dict[str, str]:
    # Marker already present: no identity-provider call on authentication
    return bearer(MockJWTGenerator.generate("auth0|root", email=SUPERADMIN_EMAIL, superadmin=True))


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return bearer(MockJWTGenerator.generate("auth0|udupi-admin", email=ADMIN_EMAIL))


@pytest.fixture
def stranger_headers() -> dict[str, str]:
    return bearer(MockJWTGenerator.generate("auth0|stranger", email="stranger@example.com"))


# ==================== Accounts ====================


@pytest.fixture
async def udupi_admin(db_session: AsyncSession) -> AdminAccount:
    """Active admin scoped to udupi, matching ``admin_headers``."""
    account = AdminAccount(
        email=ADMIN_EMAIL,
        role=AdminRole.ADMIN,
        assigned_districts=["udupi"],
        active=True,
        auth_user_id="auth0|udupi-admin",
        created_by=SUPERADMIN_EMAIL,
    )
    db_session.add(account)
    await db_session.commit()
    return account
