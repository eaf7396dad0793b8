"""Sender block-list model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sos_relay.models.base import Base, utcnow


class BlockedSender(Base):
    """
    Block entry for a sender.

    Absence of a row means the sender is not blocked. A row with
    ``blocked=False`` is treated exactly like absence.
    """

    __tablename__ = "blocked_senders"

    sender_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    blocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<BlockedSender(sender_id={self.sender_id}, blocked={self.blocked})>"
