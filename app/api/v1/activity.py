"""Audit trail listing (users.activity permission)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.auth import require_permission
from app.core.database import get_db
from app.core.security import PERMISSION_ACTIVITY_VIEW
from app.schemas.auth import ActivityItem, ActivityListResponse, CurrentUser
from app.services.audit import MAX_ACTIVITY_LIMIT, list_activity

router = APIRouter()


@router.get("", response_model=ActivityListResponse)
def get_activity(
    _admin: Annotated[CurrentUser, Depends(require_permission(PERMISSION_ACTIVITY_VIEW))],
    db: Annotated[Session, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=MAX_ACTIVITY_LIMIT)] = 50,
    user_id: int | None = None,
) -> ActivityListResponse:
    """Most recent audit entries first; optionally filtered to one account."""
    entries = list_activity(db, limit=limit, user_id=user_id)
    return ActivityListResponse(entries=[ActivityItem.model_validate(e) for e in entries])
