"""User management (users.manage permission): create and edit accounts with role and status."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.v1.auth import require_permission, user_list_item
from app.core.database import get_db
from app.core.errors import DuplicateEmailError
from app.core.security import PERMISSION_USERS_MANAGE
from app.models import Role
from app.schemas.auth import CurrentUser, UserCreateRequest, UserListItem, UserUpdateRequest
from app.services.audit import ACTOR_ADMIN, SqlAuditLogger, record_safely
from app.services.stores import SqlAccountStore, SqlRoleStore

router = APIRouter()

AUDIT_ADMIN_CREATED = "account created by administrator"
AUDIT_ADMIN_UPDATED = "account updated"


def _role_or_422(db: Session, role_id: int) -> Role:
    role = SqlRoleStore(db).find_by_id(role_id)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="The selected role is invalid.",
        )
    return role


@router.post("", response_model=UserListItem, status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreateRequest,
    _admin: Annotated[CurrentUser, Depends(require_permission(PERMISSION_USERS_MANAGE))],
    db: Annotated[Session, Depends(get_db)],
) -> UserListItem:
    """Create an account directly (no confirmation email); the admin picks role and status."""
    role = _role_or_422(db, body.role_id)
    store = SqlAccountStore(db)
    try:
        with store.atomic():
            user = store.create(
                {
                    "first_name": body.name.strip(),
                    "last_name": body.lastname.strip(),
                    "email": str(body.email).strip().lower(),
                    "password": body.password,
                    "status": body.status,
                    "phone": body.phone,
                    "birthday": body.birthday,
                }
            )
            store.assign_role(user.id, role.id)
    except DuplicateEmailError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    db.refresh(user)
    record_safely(SqlAuditLogger(), ACTOR_ADMIN, AUDIT_ADMIN_CREATED, user)
    return user_list_item(user)


@router.put("/{user_id}", response_model=UserListItem)
def update_user(
    user_id: int,
    body: UserUpdateRequest,
    _admin: Annotated[CurrentUser, Depends(require_permission(PERMISSION_USERS_MANAGE))],
    db: Annotated[Session, Depends(get_db)],
) -> UserListItem:
    """Edit an account. The email must stay unique among other accounts."""
    store = SqlAccountStore(db)
    user = store.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    role = _role_or_422(db, body.role_id)

    email = str(body.email).strip().lower()
    other = store.find_by_email(email)
    if other is not None and other.id != user.id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="The email has already been taken.",
        )

    fields = {
        "first_name": body.name.strip(),
        "last_name": body.lastname.strip(),
        "email": email,
        "status": body.status,
        "phone": body.phone,
        "birthday": body.birthday,
    }
    if body.password:
        fields["password"] = body.password
    try:
        with store.atomic():
            store.update(user.id, fields)
            store.replace_role(user.id, role.id)
    except DuplicateEmailError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    db.refresh(user)
    record_safely(SqlAuditLogger(), ACTOR_ADMIN, AUDIT_ADMIN_UPDATED, user)
    return user_list_item(user)
