"""Pydantic schemas for admin endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from sos_relay.models.admin import AdminRole
from sos_relay.schemas.sos import SosAlertItem

# ==================== Block Management Schemas ====================


class BlockUserRequest(BaseModel):
    sender_id: str = Field(..., min_length=1, max_length=255)
    reason: str | None = Field(None, max_length=1000)


class UnblockUserRequest(BaseModel):
    sender_id: str = Field(..., min_length=1, max_length=255)


class BlockActionResponse(BaseModel):
    success: bool = True
    message: str
    sender_id: str


class BlockedSenderItem(BaseModel):
    """Block-list entry."""

    model_config = ConfigDict(from_attributes=True)

    sender_id: str
    blocked: bool
    reason: str | None = None
    blocked_by: str | None = None
    blocked_at: datetime


# ==================== Admin Account Schemas ====================


class AdminCreateRequest(BaseModel):
    """Body of POST /admin/admins."""

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    assigned_districts: list[str] = Field(default_factory=list, alias="assignedDistricts")
    active: bool = True


class AdminUpdateRequest(BaseModel):
    """Body of PUT /admin/admins/{email}. Omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    assigned_districts: list[str] | None = Field(None, alias="assignedDistricts")
    active: bool | None = None


class AdminAccountItem(BaseModel):
    """Admin account as returned by the admin CRUD endpoints."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    email: str
    role: AdminRole
    assigned_districts: list[str] = Field(default_factory=list, alias="assignedDistricts")
    active: bool
    created_by: str | None = Field(None, alias="createdBy")
    updated_by: str | None = Field(None, alias="updatedBy")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class ProfileResponse(BaseModel):
    """The caller's own admin profile."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    role: AdminRole
    # None for super-admins (every district)
    assigned_districts: list[str] | None = Field(None, alias="assignedDistricts")
    active: bool


# ==================== Users Listing Schemas ====================


class UserListItem(SosAlertItem):
    """A sender's latest snapshot plus whether they are blocked."""

    blocked: bool = False


class PaginatedUsersResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    users: list[UserListItem]
    total: int
    page: int
    page_size: int = Field(..., alias="pageSize")
    total_pages: int = Field(..., alias="totalPages")
