"""ORM models for clinic records: specialties, specialists, patients and odontograms."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, created_at_column, updated_at_column


class Specialty(Base):
    __tablename__ = "specialties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)


class Specialist(Base):
    """Dentist or other practitioner listed in the specialists table."""

    __tablename__ = "specialists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(30), nullable=False)
    last_name = Column(String(30), nullable=False)
    dni = Column(String(20), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    specialty_id = Column(Integer, ForeignKey("specialties.id"), nullable=True)

    specialty = relationship("Specialty", lazy="joined")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(30), nullable=False)
    last_name = Column(String(30), nullable=False)
    dni = Column(String(20), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    birthday = Column(Date, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    odontograms = relationship(
        "Odontogram",
        back_populates="patient",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Odontogram(Base):
    """Dental chart header for a patient; removed together with the patient."""

    __tablename__ = "odontograms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(
        Integer,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = created_at_column()
    updated_at = updated_at_column()

    patient = relationship("Patient", back_populates="odontograms")
