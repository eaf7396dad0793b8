"""Admin API endpoints: block list, alert and user listings, admin accounts."""

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.access import AdminScope, require_admin, require_superadmin_principal
from sos_relay.core.auth import Principal
from sos_relay.core.database import get_db
from sos_relay.schemas.admin import (
    AdminAccountItem,
    AdminCreateRequest,
    AdminUpdateRequest,
    BlockActionResponse,
    BlockedSenderItem,
    BlockUserRequest,
    PaginatedUsersResponse,
    ProfileResponse,
    UnblockUserRequest,
    UserListItem,
)
from sos_relay.schemas.sos import SosAlertItem
from sos_relay.services.admin_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, AdminService
from sos_relay.services.alert_service import AlertService
from sos_relay.services.block_service import BlockService

router = APIRouter(prefix="/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


# ==================== Block Management ====================


@router.post("/block-user", response_model=BlockActionResponse)
async def block_user(
    request: BlockUserRequest,
    scope: AdminScope = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BlockActionResponse:
    """
    Block a sender from raising alerts.

    **Requires admin privileges.**

    Raises:
        HTTPException: 409 if the sender is already blocked
    """
    entry = await BlockService(db).block(request.sender_id, request.reason, blocked_by=scope.email)
    return BlockActionResponse(message="User blocked successfully", sender_id=entry.sender_id)


@router.post("/unblock-user", response_model=BlockActionResponse)
async def unblock_user(
    request: UnblockUserRequest,
    scope: AdminScope = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BlockActionResponse:
    """
    Unblock a sender.

    **Requires admin privileges.**

    Raises:
        HTTPException: 404 if the sender is not blocked
    """
    await BlockService(db).unblock(request.sender_id, unblocked_by=scope.email)
    return BlockActionResponse(message="User unblocked successfully", sender_id=request.sender_id)


# TODO: gate the two listings below behind require_admin once the dashboard sends bearer tokens for them
@router.get("/blocked-users", response_model=list[BlockedSenderItem])
async def list_blocked_users(db: AsyncSession = Depends(get_db)) -> list[BlockedSenderItem]:
    """Current block list, most recent first."""
    entries = await BlockService(db).list_blocked()
    return [BlockedSenderItem.model_validate(e) for e in entries]


@router.get("/sos-alerts", response_model=list[SosAlertItem])
async def list_sos_alerts(
    active: bool | None = Query(None, description="Filter on the active flag"),
    db: AsyncSession = Depends(get_db),
) -> list[SosAlertItem]:
    """Latest snapshot per sender, most recently updated first."""
    alerts = await AlertService(db).list_snapshots(active=active)
    return [SosAlertItem.model_validate(a) for a in alerts]


# ==================== Users and Profile ====================


@router.get("/users", response_model=PaginatedUsersResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, alias="pageSize"),
    search: str | None = Query(None, max_length=255),
    scope: AdminScope = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> PaginatedUsersResponse:
    """
    Senders visible to the caller, limited to their districts.

    **Requires admin privileges.**
    """
    result = await AdminService(db).list_users(scope, page=page, page_size=page_size, search=search)
    users = [
        UserListItem.model_validate(
            {**SosAlertItem.model_validate(entry.alert).model_dump(), "blocked": entry.blocked}
        )
        for entry in result.users
    ]
    return PaginatedUsersResponse(
        users=users,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(scope: AdminScope = Depends(require_admin)) -> ProfileResponse:
    """The caller's role and district scope."""
    return ProfileResponse(
        email=scope.email,
        role=scope.role,
        assigned_districts=None if scope.districts is None else sorted(scope.districts),
        active=scope.active,
    )


# ==================== Admin Accounts (super-admin) ====================


@router.get("/admins", response_model=list[AdminAccountItem])
async def list_admins(
    principal: Principal = Depends(require_superadmin_principal),
    db: AsyncSession = Depends(get_db),
) -> list[AdminAccountItem]:
    """**Requires super-admin privileges.**"""
    admins = await AdminService(db).list_admins()
    return [AdminAccountItem.model_validate(a) for a in admins]


@router.post("/admins", response_model=AdminAccountItem, status_code=status.HTTP_201_CREATED)
async def create_admin(
    request: AdminCreateRequest,
    principal: Principal = Depends(require_superadmin_principal),
    db: AsyncSession = Depends(get_db),
) -> AdminAccountItem:
    """
    Create a district admin and provision their credential.

    **Requires super-admin privileges.**

    Raises:
        HTTPException: 400 for super-admin emails, 409 if the admin or a login for the
            email already exists, 502 if the identity provider fails
    """
    account = await AdminService(db).create_admin(
        email=str(request.email),
        password=request.password,
        assigned_districts=request.assigned_districts,
        active=request.active,
        created_by=principal.email or principal.subject,
    )
    return AdminAccountItem.model_validate(account)


@router.get("/admins/{email}", response_model=AdminAccountItem)
async def get_admin(
    email: str,
    principal: Principal = Depends(require_superadmin_principal),
    db: AsyncSession = Depends(get_db),
) -> AdminAccountItem:
    """**Requires super-admin privileges.**"""
    return AdminAccountItem.model_validate(await AdminService(db).get_admin(email))


@router.put("/admins/{email}", response_model=AdminAccountItem)
async def update_admin(
    email: str,
    request: AdminUpdateRequest,
    principal: Principal = Depends(require_superadmin_principal),
    db: AsyncSession = Depends(get_db),
) -> AdminAccountItem:
    """
    Change an admin's districts or active flag.

    **Requires super-admin privileges.**
    """
    account = await AdminService(db).update_admin(
        email,
        assigned_districts=request.assigned_districts,
        active=request.active,
        updated_by=principal.email or principal.subject,
    )
    return AdminAccountItem.model_validate(account)


@router.delete("/admins/{email}")
async def delete_admin(
    email: str,
    principal: Principal = Depends(require_superadmin_principal),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool | str]:
    """**Requires super-admin privileges.**"""
    await AdminService(db).delete_admin(email)
    return {"success": True, "message": "Admin deleted successfully"}
