"""Access gate: sender block checks and district-scoped admin authorization."""

import enum
from dataclasses import dataclass

import structlog
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.auth import Principal, authenticate
from sos_relay.core.database import get_db
from sos_relay.core.errors import ForbiddenError, StorageError
from sos_relay.models.admin import AdminAccount, AdminRole
from sos_relay.models.block import BlockedSender

logger = structlog.get_logger(__name__)


class BlockBasis(str, enum.Enum):
    """Why a block decision came out the way it did."""

    NO_ENTRY = "no_entry"
    ENTRY_INACTIVE = "entry_inactive"
    ENTRY_ACTIVE = "entry_active"
    # Storage was unavailable. The gate fails open so an infrastructure fault
    # never suppresses a real emergency report.
    LOOKUP_FAILED = "lookup_failed"


@dataclass(frozen=True)
class BlockDecision:
    blocked: bool
    basis: BlockBasis

    @property
    def failed_open(self) -> bool:
        return self.basis is BlockBasis.LOOKUP_FAILED


@dataclass(frozen=True)
class AdminScope:
    """
    Districts an authenticated admin may act on.

    ``districts`` is None for unrestricted (super-admin) scope.
    """

    email: str
    role: AdminRole
    districts: frozenset[str] | None
    active: bool = True

    @property
    def unrestricted(self) -> bool:
        return self.districts is None

    def allows(self, district: str | None) -> bool:
        if self.districts is None:
            return True
        return district is not None and district in self.districts


async def is_blocked(db: AsyncSession, sender_id: str) -> BlockDecision:
    """
    Look up a sender in the block list.

    Only a row with ``blocked == True`` blocks. This is the single fail-open
    check in the system: a storage error yields an unblocked decision with
    basis ``LOOKUP_FAILED``. The failed transaction is rolled back so the
    caller can keep using the session (PostgreSQL refuses further statements
    in an aborted transaction).

    Args:
        db: Database session
        sender_id: Sender identifier

    Returns:
        BlockDecision with the explicit basis for the outcome
    """
    try:
        result = await db.execute(select(BlockedSender).where(BlockedSender.sender_id == sender_id))
        entry = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("block_lookup_failed", sender_id=sender_id, error=str(e), fail_open=True)
        return BlockDecision(blocked=False, basis=BlockBasis.LOOKUP_FAILED)

    if entry is None:
        return BlockDecision(blocked=False, basis=BlockBasis.NO_ENTRY)
    if not entry.blocked:
        return BlockDecision(blocked=False, basis=BlockBasis.ENTRY_INACTIVE)
    return BlockDecision(blocked=True, basis=BlockBasis.ENTRY_ACTIVE)


async def authorize_admin(db: AsyncSession, principal: Principal) -> AdminScope:
    """
    Resolve the admin scope for a principal.

    Super-admins get unrestricted scope. Everyone else needs an active
    ``AdminAccount``; the scope is its assigned districts.

    Raises:
        ForbiddenError: If the caller has no account or the account is inactive
        StorageError: If the account lookup fails
    """
    if principal.is_superadmin:
        assert principal.email is not None  # is_superadmin implies an email
        return AdminScope(email=principal.email, role=AdminRole.SUPERADMIN, districts=None)

    if not principal.email:
        raise ForbiddenError("Admin privileges required")

    try:
        account = await db.get(AdminAccount, principal.email)
    except SQLAlchemyError as e:
        logger.error("admin_lookup_failed", error=str(e))
        raise StorageError("Failed to load admin account") from e

    if account is None or not account.active:
        logger.warning("admin_access_denied", reason="missing" if account is None else "inactive")
        raise ForbiddenError("Admin privileges required")

    return AdminScope(
        email=account.email,
        role=AdminRole.ADMIN,
        districts=frozenset(account.assigned_districts or []),
        active=account.active,
    )


def require_superadmin(principal: Principal) -> None:
    """
    Raises:
        ForbiddenError: Unless the principal's email is on the super-admin allow-list
    """
    if not principal.is_superadmin:
        raise ForbiddenError("Super-admin privileges required")


# ==================== FastAPI dependencies ====================


async def require_admin(
    principal: Principal = Depends(authenticate),
    db: AsyncSession = Depends(get_db),
) -> AdminScope:
    """Dependency: authenticated, active admin (or super-admin)."""
    return await authorize_admin(db, principal)


async def require_superadmin_principal(principal: Principal = Depends(authenticate)) -> Principal:
    """Dependency: authenticated super-admin."""
    require_superadmin(principal)
    return principal
