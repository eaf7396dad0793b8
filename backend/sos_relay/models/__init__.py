"""Database models for the SOS relay."""

from sos_relay.models.admin import AdminAccount, AdminRole
from sos_relay.models.alert import EXPIRED_BY_SCHEDULED_JOB, LIVE_ONLY_COLUMNS, SosAlert
from sos_relay.models.base import Base
from sos_relay.models.block import BlockedSender

__all__ = [
    "Base",
    # Alert state
    "SosAlert",
    "LIVE_ONLY_COLUMNS",
    "EXPIRED_BY_SCHEDULED_JOB",
    # Access control
    "BlockedSender",
    "AdminAccount",
    "AdminRole",
]
