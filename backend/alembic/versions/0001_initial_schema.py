"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "sos_alerts",
        sa.Column("sender_id", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("reporter_name", sa.String(length=255), nullable=True),
        sa.Column("reporter_phone", sa.String(length=64), nullable=True),
        sa.Column("reporter_message", sa.Text(), nullable=True),
        sa.Column("place_name", sa.String(length=500), nullable=True),
        sa.Column("district", sa.String(length=100), nullable=False),
        sa.Column("region", sa.String(length=100), nullable=True),
        sa.Column("alert_timestamp", sa.String(length=32), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_by", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("sender_id"),
    )
    op.create_index("ix_sos_alerts_active_last_updated", "sos_alerts", ["active", "last_updated"])
    op.create_index("ix_sos_alerts_district", "sos_alerts", ["district"])

    op.create_table(
        "blocked_senders",
        sa.Column("sender_id", sa.String(length=255), nullable=False),
        sa.Column("blocked", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("blocked_by", sa.String(length=320), nullable=True),
        sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("sender_id"),
    )

    op.create_table(
        "admin_accounts",
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column(
            "role",
            sa.Enum("admin", "superadmin", name="admin_role", create_constraint=True),
            nullable=False,
        ),
        sa.Column("assigned_districts", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("auth_user_id", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=320), nullable=True),
        sa.Column("updated_by", sa.String(length=320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("email"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("admin_accounts")
    sa.Enum(name="admin_role").drop(op.get_bind(), checkfirst=True)
    op.drop_table("blocked_senders")
    op.drop_index("ix_sos_alerts_district", table_name="sos_alerts")
    op.drop_index("ix_sos_alerts_active_last_updated", table_name="sos_alerts")
    op.drop_table("sos_alerts")
