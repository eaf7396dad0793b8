"""Expiration sweeper: silently expires alerts that stopped receiving updates."""

from datetime import datetime, timedelta
from typing import TypedDict

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.config import settings
from sos_relay.core.errors import StorageError, ValidationError
from sos_relay.core.telemetry import service_span
from sos_relay.models.alert import EXPIRED_BY_SCHEDULED_JOB, LIVE_ONLY_COLUMNS, SosAlert
from sos_relay.models.base import utcnow

logger = structlog.get_logger(__name__)


class ExpirySweepStats(TypedDict):
    expired_count: int
    sender_ids: list[str]
    cutoff: str


def expiry_cutoff(now: datetime, threshold_minutes: int) -> datetime:
    """Rows last updated strictly before this instant are stale."""
    return now - timedelta(minutes=threshold_minutes)


class ExpirationService:
    """
    Force-transitions stale active alerts to inactive.

    Expiry never notifies subscribers: "we gave up waiting" must stay
    distinguishable from "someone confirmed the resolution".
    """

    def __init__(self, db: AsyncSession, threshold_minutes: int | None = None) -> None:
        """
        Initialize the expiration service.

        Args:
            db: Database session
            threshold_minutes: Staleness threshold (defaults to SOS_EXPIRY_THRESHOLD_MINUTES).
                0 expires every active alert.

        Raises:
            ValidationError: If the threshold is negative
        """
        self.db = db
        if threshold_minutes is None:
            threshold_minutes = settings.SOS_EXPIRY_THRESHOLD_MINUTES
        if threshold_minutes < 0:
            raise ValidationError("threshold must not be negative")
        self.threshold_minutes = threshold_minutes

    async def expire_stale_alerts(self) -> ExpirySweepStats:
        """
        Expire every active alert older than the threshold in one transaction.

        Qualifying rows get ``active=False``, their live-only columns cleared and
        ``expired_at``/``expired_by`` stamped. A sweep that finds nothing does not
        write.

        Returns:
            Sweep statistics with the expired sender ids

        Raises:
            StorageError: If the scan or the batch update fails (nothing from this batch is kept)
        """
        now = utcnow()
        cutoff = expiry_cutoff(now, self.threshold_minutes)

        with service_span("alert.expire_stale", "alert-service") as span:
            span.set_attribute("expiry.threshold_minutes", self.threshold_minutes)
            try:
                result = await self.db.execute(
                    select(SosAlert.sender_id).where(
                        SosAlert.active == True,  # noqa: E712
                        SosAlert.last_updated < cutoff,
                    )
                )
                sender_ids = list(result.scalars().all())

                if not sender_ids:
                    logger.info("no_stale_alerts", cutoff=cutoff.isoformat())
                    span.set_attribute("expiry.expired_count", 0)
                    return ExpirySweepStats(expired_count=0, sender_ids=[], cutoff=cutoff.isoformat())

                # Re-check active/cutoff so a raise that lands between the scan and
                # the update is not expired; report only the rows actually flipped
                updated = await self.db.execute(
                    update(SosAlert)
                    .where(
                        SosAlert.sender_id.in_(sender_ids),
                        SosAlert.active == True,  # noqa: E712
                        SosAlert.last_updated < cutoff,
                    )
                    .values(
                        active=False,
                        **dict.fromkeys(LIVE_ONLY_COLUMNS),
                        expired_at=now,
                        expired_by=EXPIRED_BY_SCHEDULED_JOB,
                        last_updated=now,
                        updated_at=now,
                    )
                    .returning(SosAlert.sender_id)
                    .execution_options(synchronize_session=False)
                )
                expired_ids = sorted(updated.scalars().all())
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("alert_expiry_failed", error=str(e), exc_info=e)
                raise StorageError("Failed to expire stale alerts") from e

            span.set_attribute("expiry.expired_count", len(expired_ids))
            logger.info(
                "stale_alerts_expired",
                expired_count=len(expired_ids),
                scanned_count=len(sender_ids),
                sender_ids=expired_ids,
                cutoff=cutoff.isoformat(),
            )
            return ExpirySweepStats(expired_count=len(expired_ids), sender_ids=expired_ids, cutoff=cutoff.isoformat())
