"""Specialists listing."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.models import Specialist
from app.schemas.auth import CurrentUser
from app.schemas.clinic import SpecialistItem, SpecialistsListResponse

router = APIRouter()


def specialist_item(specialist: Specialist) -> SpecialistItem:
    return SpecialistItem(
        id=specialist.id,
        full_name=f"{specialist.first_name} {specialist.last_name}",
        dni=specialist.dni,
        email=specialist.email,
        phone=specialist.phone,
        status="Active" if specialist.active else "Inactive",
        specialty=specialist.specialty.name if specialist.specialty else None,
    )


@router.get("", response_model=SpecialistsListResponse)
def list_specialists(
    _user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> SpecialistsListResponse:
    """All specialists ordered by last name, with specialty and active/inactive status."""
    rows = db.query(Specialist).order_by(Specialist.last_name, Specialist.first_name).all()
    return SpecialistsListResponse(specialists=[specialist_item(s) for s in rows])
