"""Alert snapshot model: one current-state row per sender."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sos_relay.models.base import Base, TimestampMixin

# Value stamped into expired_by when the scheduled sweeper expires a row
EXPIRED_BY_SCHEDULED_JOB = "scheduled_job"

# Column widths, shared with the request schemas so oversize input is a 400
SENDER_ID_MAX_LENGTH = 255
REPORTER_NAME_MAX_LENGTH = 255
REPORTER_PHONE_MAX_LENGTH = 64
PLACE_NAME_MAX_LENGTH = 500
DISTRICT_MAX_LENGTH = 100
REGION_MAX_LENGTH = 100
ALERT_TIMESTAMP_MAX_LENGTH = 32

# Columns that only carry meaning while a sender is in emergency.
# They are cleared on the same write that sets active=False.
LIVE_ONLY_COLUMNS = (
    "latitude",
    "longitude",
    "accuracy",
    "reporter_name",
    "reporter_phone",
    "reporter_message",
    "place_name",
)


class SosAlert(Base, TimestampMixin):
    """
    Latest alert snapshot for a sender.

    Rows are upserted, never appended and never deleted, so the table doubles
    as the "last known state" listing for the admin dashboard.
    """

    __tablename__ = "sos_alerts"

    sender_id: Mapped[str] = mapped_column(String(SENDER_ID_MAX_LENGTH), primary_key=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)

    reporter_name: Mapped[str | None] = mapped_column(String(REPORTER_NAME_MAX_LENGTH), nullable=True)
    reporter_phone: Mapped[str | None] = mapped_column(String(REPORTER_PHONE_MAX_LENGTH), nullable=True)
    reporter_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    place_name: Mapped[str | None] = mapped_column(String(PLACE_NAME_MAX_LENGTH), nullable=True)

    district: Mapped[str] = mapped_column(String(DISTRICT_MAX_LENGTH), nullable=False)
    region: Mapped[str | None] = mapped_column(String(REGION_MAX_LENGTH), nullable=True)

    alert_timestamp: Mapped[str | None] = mapped_column(String(ALERT_TIMESTAMP_MAX_LENGTH), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_by: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        # Sweeper scans active rows by age; dashboard filters by district
        Index("ix_sos_alerts_active_last_updated", "active", "last_updated"),
        Index("ix_sos_alerts_district", "district"),
    )

    def __repr__(self) -> str:
        return f"<SosAlert(sender_id={self.sender_id}, active={self.active}, district={self.district})>"
