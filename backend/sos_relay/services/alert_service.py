"""Alert lifecycle engine: raise/resolve transitions over the one-row-per-sender store."""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.access import is_blocked
from sos_relay.core.config import settings
from sos_relay.core.errors import ForbiddenError, StorageError, ValidationError
from sos_relay.core.telemetry import service_span
from sos_relay.models.alert import DISTRICT_MAX_LENGTH, LIVE_ONLY_COLUMNS, REGION_MAX_LENGTH, SosAlert
from sos_relay.models.base import utcnow
from sos_relay.schemas.sos import LocationIn, UserInfoIn
from sos_relay.services.push_service import (
    AlertContent,
    PushService,
    build_alert_message,
    build_resolved_message,
    build_test_message,
    topic_for_district,
)
from sos_relay.utils.pii import hash_optional_pii

logger = structlog.get_logger(__name__)

TEST_SENDER_ID = "test-sender-fid"
TEST_LOCATION = LocationIn(latitude=13.3409, longitude=74.7421, accuracy=10)
TEST_PHONE = "+91-XXXX-XXXX"


# ==================== Pure Helper Functions ====================


def derive_region(place_name: str | None) -> str | None:
    """
    Derive the coarse region label from a free-text place.

    Best effort: the last comma-separated segment, upper-cased and cut to the
    column width so an odd place name never fails a raise.

    Example:
        >>> derive_region("Manipal, Karnataka")
        'KARNATAKA'
        >>> derive_region(None) is None
        True
    """
    if not place_name:
        return None
    region = place_name.split(",")[-1].strip().upper()[:REGION_MAX_LENGTH].rstrip()
    return region or None


def server_timestamp() -> str:
    """Epoch milliseconds as a string, matching what clients send."""
    return str(int(time.time() * 1000))


def require_district(district: str | None) -> str:
    """
    Raises:
        ValidationError: If the district is missing, blank or too long. Never defaulted.
    """
    if not district or not district.strip():
        raise ValidationError("district is required in userInfo")
    district = district.strip()
    if len(district) > DISTRICT_MAX_LENGTH:
        raise ValidationError(f"district must be at most {DISTRICT_MAX_LENGTH} characters")
    return district


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a raise or resolve transition."""

    sender_id: str
    district: str
    topic: str
    message_id: str
    active: bool
    alert_timestamp: str
    last_updated: datetime


@dataclass(frozen=True)
class PushTestResult:
    sender_id: str
    district: str
    topic: str
    message_id: str
    location: LocationIn
    user_info: dict[str, Any]


class AlertService:
    """Raise/resolve state machine backed by the ``sos_alerts`` table."""

    def __init__(self, db: AsyncSession, push_service: PushService | None = None) -> None:
        """
        Initialize the alert service.

        Args:
            db: Database session
            push_service: Fan-out collaborator (defaults to the configured provider)
        """
        self.db = db
        self.push_service = push_service or PushService()

    # ==================== Transitions ====================

    async def raise_alert(
        self,
        sender_id: str,
        district: str | None,
        location: LocationIn | None,
        user_info: UserInfoIn | None = None,
        timestamp: str | None = None,
    ) -> TransitionResult:
        """
        Put a sender into (or refresh) the Active state and notify the district.

        Re-raising an active sender overwrites the snapshot and notifies again.

        Raises:
            ValidationError: Missing sender, district or location
            ForbiddenError: The sender is blocked
            StorageError: The snapshot write failed (nothing is sent)
            DeliveryError: The push failed (the snapshot stays written)
        """
        if not sender_id:
            raise ValidationError("sender_id is required")
        district = require_district(district)
        if location is None:
            raise ValidationError("location is required for sos_alert")

        with service_span("alert.raise", "alert-service") as span:
            span.set_attribute("alert.district", district)

            decision = await is_blocked(self.db, sender_id)
            span.set_attribute("alert.block_basis", decision.basis.value)
            if decision.blocked:
                logger.warning("blocked_sender_raise_rejected", sender_id=sender_id, district=district)
                raise ForbiddenError("Your account has been restricted from using this service")

            info = user_info or UserInfoIn(district=district)
            alert_timestamp = timestamp or server_timestamp()
            now = utcnow()
            await self._write_snapshot(
                {
                    "sender_id": sender_id,
                    "active": True,
                    "latitude": location.latitude,
                    "longitude": location.longitude,
                    "accuracy": location.accuracy,
                    "reporter_name": info.name,
                    "reporter_phone": info.phone,
                    "reporter_message": info.message,
                    "place_name": info.location,
                    "district": district,
                    "region": derive_region(info.location),
                    "alert_timestamp": alert_timestamp,
                    "last_updated": now,
                    "expired_at": None,
                    "expired_by": None,
                }
            )
            logger.info(
                "sos_alert_recorded",
                sender_id=sender_id,
                district=district,
                reporter_phone_hash=hash_optional_pii(info.phone),
            )

            message = build_alert_message(
                AlertContent(
                    sender_id=sender_id,
                    district=district,
                    timestamp=alert_timestamp,
                    reporter_name=info.name,
                    place_name=info.location,
                    location=location.model_dump(exclude_none=True),
                    user_info=info.model_dump(exclude_none=True),
                )
            )
            message_id = await self.push_service.send(message)
            logger.info("sos_alert_sent", sender_id=sender_id, topic=message.topic, message_id=message_id)

            return TransitionResult(
                sender_id=sender_id,
                district=district,
                topic=message.topic,
                message_id=message_id,
                active=True,
                alert_timestamp=alert_timestamp,
                last_updated=now,
            )

    async def resolve_alert(
        self,
        sender_id: str,
        district: str | None,
        user_info: UserInfoIn | None = None,
        timestamp: str | None = None,
    ) -> TransitionResult:
        """
        Put a sender into the Inactive state and notify the district.

        The block list is not consulted: a blocked sender can always cancel an
        alert. Resolving an inactive sender rewrites the same inactive row and
        still notifies.

        Raises:
            ValidationError: Missing sender or district
            StorageError: The snapshot write failed (nothing is sent)
            DeliveryError: The push failed (the snapshot stays written)
        """
        if not sender_id:
            raise ValidationError("sender_id is required")
        district = require_district(district)

        with service_span("alert.resolve", "alert-service") as span:
            span.set_attribute("alert.district", district)

            alert_timestamp = timestamp or server_timestamp()
            now = utcnow()
            await self._write_snapshot(
                {
                    "sender_id": sender_id,
                    "active": False,
                    **dict.fromkeys(LIVE_ONLY_COLUMNS),
                    "district": district,
                    "alert_timestamp": alert_timestamp,
                    "last_updated": now,
                    "expired_at": None,
                    "expired_by": None,
                }
            )
            logger.info("sos_alert_resolved", sender_id=sender_id, district=district)

            message = build_resolved_message(
                AlertContent(
                    sender_id=sender_id,
                    district=district,
                    timestamp=alert_timestamp,
                    reporter_name=user_info.name if user_info else None,
                    place_name=user_info.location if user_info else None,
                )
            )
            message_id = await self.push_service.send(message)
            logger.info("sos_resolved_sent", sender_id=sender_id, topic=message.topic, message_id=message_id)

            return TransitionResult(
                sender_id=sender_id,
                district=district,
                topic=topic_for_district(district),
                message_id=message_id,
                active=False,
                alert_timestamp=alert_timestamp,
                last_updated=now,
            )

    async def send_test_push(
        self,
        district: str | None = None,
        title: str | None = None,
        body: str | None = None,
    ) -> PushTestResult:
        """
        Send a diagnostic alert to a district without touching stored state.

        ``title`` and ``body`` replace the reporter name and place in the
        notification text.

        Raises:
            DeliveryError: The push failed
        """
        district = (district or "").strip() or settings.TEST_PUSH_DEFAULT_DISTRICT
        user_info = {
            "name": "Test User",
            "district": district,
            "location": f"{district[:1].upper()}{district[1:]} Test Location",
            "phone": TEST_PHONE,
        }

        with service_span("alert.test_push", "alert-service") as span:
            span.set_attribute("alert.district", district)
            message = build_test_message(
                AlertContent(
                    sender_id=TEST_SENDER_ID,
                    district=district,
                    timestamp=server_timestamp(),
                    reporter_name=title or user_info["name"],
                    place_name=body or user_info["location"],
                    location=TEST_LOCATION.model_dump(exclude_none=True),
                    user_info=user_info,
                )
            )
            message_id = await self.push_service.send(message)
            logger.info("test_push_sent", topic=message.topic, message_id=message_id)

        return PushTestResult(
            sender_id=TEST_SENDER_ID,
            district=district,
            topic=message.topic,
            message_id=message_id,
            location=TEST_LOCATION,
            user_info=user_info,
        )

    # ==================== Store ====================

    async def _write_snapshot(self, values: dict[str, Any]) -> None:
        """
        Upsert a fully formed snapshot row and commit.

        A single INSERT ... ON CONFLICT DO UPDATE keeps concurrent writers for the
        same sender from producing a mixed row; the last writer wins.

        Raises:
            StorageError: If the write fails (the transaction is rolled back)
        """
        dialect = self.db.get_bind().dialect.name
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = insert(SosAlert).values(**values, created_at=values["last_updated"], updated_at=values["last_updated"])
        stmt = stmt.on_conflict_do_update(
            index_elements=[SosAlert.sender_id],
            # Columns missing from values (region on resolve, created_at) keep their stored value
            set_={
                **{key: stmt.excluded[key] for key in values if key != "sender_id"},
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("alert_snapshot_write_failed", sender_id=values["sender_id"], error=str(e), exc_info=e)
            raise StorageError("Failed to store alert state") from e

    async def get_snapshot(self, sender_id: str) -> SosAlert | None:
        """Current snapshot for a sender, or None if it never raised or resolved."""
        result = await self.db.execute(
            select(SosAlert).where(SosAlert.sender_id == sender_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_snapshots(self, active: bool | None = None) -> list[SosAlert]:
        """
        All snapshots, most recently updated first.

        Args:
            active: Filter on the active flag (None returns every row)
        """
        query = select(SosAlert).order_by(SosAlert.last_updated.desc()).execution_options(populate_existing=True)
        if active is not None:
            query = query.where(SosAlert.active == active)
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            logger.error("alert_listing_failed", error=str(e))
            raise StorageError("Failed to list alerts") from e
        return list(result.scalars().all())
