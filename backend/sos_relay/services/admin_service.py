"""Admin service: admin-account CRUD and the sender listing for dashboards."""

import math
from dataclasses import dataclass

import aiosmtplib
import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.access import AdminScope
from sos_relay.core.config import settings
from sos_relay.core.errors import ConflictError, IdentityProviderError, NotFoundError, StorageError, ValidationError
from sos_relay.core.telemetry import service_span
from sos_relay.models.admin import AdminAccount, AdminRole
from sos_relay.models.alert import SosAlert
from sos_relay.services.block_service import BlockService
from sos_relay.services.email_service import EmailService
from sos_relay.services.identity_service import IdentityService
from sos_relay.utils.pii import hash_pii

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# ==================== Pure Helper Functions ====================


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_districts(districts: list[str] | None) -> list[str]:
    """
    Strip, drop blanks and de-duplicate while keeping the given order.

    Example:
        >>> normalize_districts([" udupi", "udupi", "", "mangalore"])
        ['udupi', 'mangalore']
    """
    seen: list[str] = []
    for district in districts or []:
        value = district.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def calculate_total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


@dataclass(frozen=True)
class UserEntry:
    """A sender row from the alert table merged with its block status."""

    alert: SosAlert
    blocked: bool


@dataclass(frozen=True)
class UserPage:
    users: list[UserEntry]
    total: int
    page: int
    page_size: int
    total_pages: int


class AdminService:
    """Service for admin-account management and admin listings."""

    def __init__(
        self,
        db: AsyncSession,
        identity_service: IdentityService | None = None,
    ) -> None:
        """
        Initialize the admin service.

        Args:
            db: Database session
            identity_service: Identity-provider client for admin credentials
        """
        self.db = db
        self.identity_service = identity_service or IdentityService()

    # ==================== Admin accounts ====================

    def _reject_reserved(self, email: str) -> None:
        if settings.is_superadmin_email(email):
            raise ValidationError("Super-admin accounts are managed by configuration and cannot be modified")

    async def _get_account(self, email: str) -> AdminAccount | None:
        try:
            return await self.db.get(AdminAccount, email)
        except SQLAlchemyError as e:
            logger.error("admin_lookup_failed", error=str(e))
            raise StorageError("Failed to load admin account") from e

    async def list_admins(self) -> list[AdminAccount]:
        """All admin accounts, newest first."""
        try:
            result = await self.db.execute(select(AdminAccount).order_by(AdminAccount.created_at.desc()))
        except SQLAlchemyError as e:
            logger.error("admin_listing_failed", error=str(e))
            raise StorageError("Failed to list admins") from e
        return list(result.scalars().all())

    async def get_admin(self, email: str) -> AdminAccount:
        """
        Raises:
            NotFoundError: If no account exists for the email
        """
        account = await self._get_account(normalize_email(email))
        if account is None:
            raise NotFoundError("Admin not found")
        return account

    async def create_admin(
        self,
        email: str,
        password: str,
        assigned_districts: list[str] | None,
        active: bool,
        created_by: str,
    ) -> AdminAccount:
        """
        Create a district admin.

        The credential is provisioned at the identity provider first. If the
        account row cannot be stored the credential is deleted again. A welcome
        email follows; its failure does not fail the creation.

        Raises:
            ValidationError: If the email is a super-admin email
            ConflictError: If an account or an identity-provider user already exists for the email
            IdentityProviderError: If the credential cannot be provisioned
            StorageError: If the account row cannot be stored
        """
        email = normalize_email(email)
        self._reject_reserved(email)
        districts = normalize_districts(assigned_districts)

        with service_span("admin.create_admin", "admin-service") as span:
            span.set_attribute("admin.district_count", len(districts))

            if await self._get_account(email) is not None:
                raise ConflictError("Admin already exists")
            if await self.identity_service.find_user_by_email(email) is not None:
                logger.warning("admin_identity_already_exists", email_hash=hash_pii(email))
                raise ConflictError("A login already exists for this email at the identity provider")

            auth_user_id = await self.identity_service.create_user(email, password)

            account = AdminAccount(
                email=email,
                role=AdminRole.ADMIN,
                assigned_districts=districts,
                active=active,
                auth_user_id=auth_user_id,
                created_by=created_by,
                updated_by=created_by,
            )
            try:
                self.db.add(account)
                await self.db.commit()
                await self.db.refresh(account)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("admin_create_failed", email_hash=hash_pii(email), error=str(e))
                await self._discard_credential(auth_user_id)
                raise StorageError("Failed to create admin") from e

            logger.info("admin_created", email_hash=hash_pii(email), district_count=len(districts))

        await self._send_welcome_email(email, districts)
        return account

    async def _discard_credential(self, auth_user_id: str) -> None:
        try:
            await self.identity_service.delete_user(auth_user_id)
        except IdentityProviderError as e:
            # Orphaned credential: has to be removed by hand at the identity provider
            logger.error("admin_credential_cleanup_failed", error=str(e))

    async def _send_welcome_email(self, email: str, districts: list[str]) -> None:
        try:
            await EmailService().send_welcome_email(email, districts)
        except (ValueError, OSError, aiosmtplib.SMTPException) as e:
            logger.warning("welcome_email_failed", recipient_hash=hash_pii(email), error=str(e))

    async def update_admin(
        self,
        email: str,
        assigned_districts: list[str] | None,
        active: bool | None,
        updated_by: str,
    ) -> AdminAccount:
        """
        Change an admin's districts and/or active flag. ``None`` leaves a field as is.

        Raises:
            ValidationError: If the email is a super-admin email
            NotFoundError: If no account exists for the email
        """
        email = normalize_email(email)
        self._reject_reserved(email)

        account = await self._get_account(email)
        if account is None:
            raise NotFoundError("Admin not found")

        if assigned_districts is not None:
            account.assigned_districts = normalize_districts(assigned_districts)
        if active is not None:
            account.active = active
        account.updated_by = updated_by

        try:
            await self.db.commit()
            await self.db.refresh(account)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("admin_update_failed", email_hash=hash_pii(email), error=str(e))
            raise StorageError("Failed to update admin") from e

        logger.info("admin_updated", email_hash=hash_pii(email), active=account.active)
        return account

    async def delete_admin(self, email: str) -> None:
        """
        Remove an admin's credential and account.

        Raises:
            ValidationError: If the email is a super-admin email
            NotFoundError: If no account exists for the email
            IdentityProviderError: If the credential cannot be removed (the account is kept)
        """
        email = normalize_email(email)
        self._reject_reserved(email)

        account = await self._get_account(email)
        if account is None:
            raise NotFoundError("Admin not found")

        if account.auth_user_id:
            await self.identity_service.delete_user(account.auth_user_id)

        try:
            await self.db.delete(account)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("admin_delete_failed", email_hash=hash_pii(email), error=str(e))
            raise StorageError("Failed to delete admin") from e

        logger.info("admin_deleted", email_hash=hash_pii(email))

    # ==================== Users listing ====================

    async def list_users(
        self,
        scope: AdminScope,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
    ) -> UserPage:
        """
        Page through senders visible to an admin.

        Args:
            scope: Caller's district scope
            page: 1-based page number
            page_size: Rows per page (1-100)
            search: Case-insensitive substring over id, name, phone, place and district

        Raises:
            ValidationError: If page or page_size is out of range
        """
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"pageSize must be between 1 and {MAX_PAGE_SIZE}")

        with service_span("admin.list_users", "admin-service") as span:
            span.set_attribute("admin.page", page)
            span.set_attribute("admin.page_size", page_size)
            span.set_attribute("admin.search_enabled", bool(search))
            span.set_attribute("admin.unrestricted", scope.unrestricted)

            filters = []
            if scope.districts is not None:
                filters.append(SosAlert.district.in_(sorted(scope.districts)))
            if search and search.strip():
                search_term = f"%{search.strip()}%"
                filters.append(
                    or_(
                        SosAlert.sender_id.ilike(search_term),
                        SosAlert.reporter_name.ilike(search_term),
                        SosAlert.reporter_phone.ilike(search_term),
                        SosAlert.place_name.ilike(search_term),
                        SosAlert.district.ilike(search_term),
                    )
                )

            try:
                total = (await self.db.execute(select(func.count()).select_from(SosAlert).where(*filters))).scalar() or 0
                result = await self.db.execute(
                    select(SosAlert)
                    .where(*filters)
                    .order_by(SosAlert.last_updated.desc(), SosAlert.sender_id)
                    .limit(page_size)
                    .offset((page - 1) * page_size)
                    .execution_options(populate_existing=True)
                )
                alerts = list(result.scalars().all())
                blocked = await BlockService(self.db).blocked_sender_ids([a.sender_id for a in alerts])
            except SQLAlchemyError as e:
                logger.error("user_listing_failed", error=str(e))
                raise StorageError("Failed to list users") from e

            span.set_attribute("admin.result_count", len(alerts))
            span.set_attribute("admin.total_count", total)

            return UserPage(
                users=[UserEntry(alert=a, blocked=a.sender_id in blocked) for a in alerts],
                total=total,
                page=page,
                page_size=page_size,
                total_pages=calculate_total_pages(total, page_size),
            )
