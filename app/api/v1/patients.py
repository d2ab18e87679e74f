"""Patient odontograms (dental charts)."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.models import Odontogram, Patient
from app.schemas.auth import CurrentUser
from app.schemas.clinic import OdontogramItem, OdontogramListResponse

router = APIRouter()


def _patient_or_404(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found.")
    return patient


@router.get("/{patient_id}/odontograms", response_model=OdontogramListResponse)
def list_odontograms(
    patient_id: int,
    _user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> OdontogramListResponse:
    """Odontograms of one patient, newest first."""
    _patient_or_404(db, patient_id)
    rows = (
        db.query(Odontogram)
        .filter(Odontogram.patient_id == patient_id)
        .order_by(Odontogram.id.desc())
        .all()
    )
    return OdontogramListResponse(
        patient_id=patient_id,
        odontograms=[OdontogramItem.model_validate(o) for o in rows],
    )


@router.post(
    "/{patient_id}/odontograms",
    response_model=OdontogramItem,
    status_code=status.HTTP_201_CREATED,
)
def create_odontogram(
    patient_id: int,
    _user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> OdontogramItem:
    """Open a new odontogram for the patient."""
    _patient_or_404(db, patient_id)
    odontogram = Odontogram(patient_id=patient_id)
    db.add(odontogram)
    db.commit()
    db.refresh(odontogram)
    return OdontogramItem.model_validate(odontogram)
