"""JWT login and auth dependencies (get_current_user, require_permission)."""

from collections.abc import Callable
from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.security import (
    ALL_PERMISSIONS,
    PERMISSION_USERS_MANAGE,
    create_access_token,
    decode_access_token,
    verify_password,
)
from app.models import AccountStatus, User
from app.schemas.auth import (
    CurrentUser,
    LoginRequest,
    TokenResponse,
    UserListItem,
    UsersListResponse,
)
from app.services.stores import SqlAccountStore

router = APIRouter()
security = HTTPBearer(auto_error=False)

# Synthetic principal used when AUTH_ENABLED is False (local development only).
DEV_USER = CurrentUser(
    id=0,
    email="dev@localhost",
    role="admin",
    permissions=list(ALL_PERMISSIONS),
)


def user_list_item(user: User) -> UserListItem:
    return UserListItem(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        status=user.status,
        role=user.role_name,
        phone=user.phone,
        birthday=user.birthday,
        created_at=user.created_at,
    )


@router.post("", response_model=TokenResponse)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
) -> TokenResponse:
    """
    Authenticate with email and password; returns a JWT access token.
    Include the token in the Authorization header as: Bearer <access_token>
    """
    user = SqlAccountStore(db).find_by_email(body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )
    if user.status == AccountStatus.UNCONFIRMED.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please confirm your email address first.",
        )
    if user.status == AccountStatus.BANNED.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is banned by the administrator.",
        )
    token = create_access_token(sub=user.id, role=user.role_name)
    return TokenResponse(access_token=token, token_type="bearer")


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
) -> CurrentUser:
    """Dependency: require valid Bearer JWT and return the current user. Raises 401 if missing or invalid."""
    if not get_settings().AUTH_ENABLED:
        return DEV_USER
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = SqlAccountStore(db).find_by_id(user_id)
    if user is None or user.status != AccountStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentUser(
        id=user.id,
        email=user.email,
        role=user.role_name,
        permissions=user.permission_names,
    )


def require_permission(permission: str) -> Callable[..., CurrentUser]:
    """Dependency factory: require an authenticated user whose roles grant `permission` (403 otherwise)."""

    def dependency(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if permission not in current_user.permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action.",
            )
        return current_user

    return dependency


@router.get("/users", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[CurrentUser, Depends(require_permission(PERMISSION_USERS_MANAGE))],
    db: Annotated[Session, Depends(get_db)],
) -> UsersListResponse:
    """List all accounts with role and status (users.manage)."""
    users = SqlAccountStore(db).list_users()
    return UsersListResponse(users=[user_list_item(u) for u in users])
