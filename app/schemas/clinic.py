"""Pydantic schemas for specialists and odontograms."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SpecialistItem(BaseModel):
    """One row of the specialists listing."""

    id: int
    full_name: str = Field(..., description="First and last name.")
    dni: str = Field(..., description="National identity document number.")
    email: str | None = None
    phone: str | None = None
    status: Literal["Active", "Inactive"]
    specialty: str | None = Field(default=None, description="Specialty name, if assigned.")


class SpecialistsListResponse(BaseModel):
    specialists: list[SpecialistItem]


class OdontogramItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OdontogramListResponse(BaseModel):
    patient_id: int
    odontograms: list[OdontogramItem]
