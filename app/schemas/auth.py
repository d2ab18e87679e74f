"""Request/response schemas for auth and admin user endpoints."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

StatusValue = Literal["Unconfirmed", "Active", "Banned"]


class LoginRequest(BaseModel):
    """Credentials for login."""

    email: str = Field(..., min_length=1, max_length=255, description="Account email")
    password: str = Field(..., min_length=6, max_length=128, description="Password")


class TokenResponse(BaseModel):
    """JWT access token returned after successful login."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")


class CurrentUser(BaseModel):
    """Authenticated user (id, email, role, granted permissions) for dependency injection."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: str
    permissions: list[str] = Field(default_factory=list)


class UserListItem(BaseModel):
    """User entry for admin list (no password, no token)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    status: str
    role: str
    phone: str | None = None
    birthday: date | None = None
    created_at: datetime | None = None


class UsersListResponse(BaseModel):
    """Response for GET /auth/users (users.manage)."""

    users: list[UserListItem]


class UserCreateRequest(BaseModel):
    """Admin create form: account fields plus role and status."""

    name: str = Field(..., min_length=1, max_length=30)
    lastname: str = Field(..., min_length=1, max_length=30)
    email: EmailStr = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    phone: str | None = Field(default=None, max_length=30)
    birthday: date | None = None
    role_id: int = Field(..., ge=1)
    status: StatusValue = "Active"


class UserUpdateRequest(BaseModel):
    """Admin edit form; password is only changed when provided."""

    name: str = Field(..., min_length=1, max_length=30)
    lastname: str = Field(..., min_length=1, max_length=30)
    email: EmailStr = Field(..., max_length=255)
    password: str | None = Field(default=None, min_length=6, max_length=128)
    phone: str | None = Field(default=None, max_length=30)
    birthday: date | None = None
    role_id: int = Field(..., ge=1)
    status: StatusValue


class ActivityItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None
    actor: str
    description: str
    created_at: datetime | None = None


class ActivityListResponse(BaseModel):
    entries: list[ActivityItem]
