"""Admin account model."""

import enum

from sqlalchemy import JSON, Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from sos_relay.models.base import Base, TimestampMixin


class AdminRole(str, enum.Enum):
    """Admin role levels."""

    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class AdminAccount(Base, TimestampMixin):
    """
    District-scoped administrator.

    Super-admins come from configuration and never have a row here, so the
    stored role is always ``admin``.
    """

    __tablename__ = "admin_accounts"

    email: Mapped[str] = mapped_column(String(320), primary_key=True)
    role: Mapped[AdminRole] = mapped_column(
        Enum(
            AdminRole,
            name="admin_role",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=AdminRole.ADMIN,
    )
    assigned_districts: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auth_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(320), nullable=True)

    def __repr__(self) -> str:
        return f"<AdminAccount(email={self.email}, role={self.role}, active={self.active})>"
