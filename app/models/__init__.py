"""SQLAlchemy ORM models."""

from app.models.activity import ActivityEntry
from app.models.base import Base
from app.models.clinic import Odontogram, Patient, Specialist, Specialty
from app.models.role import Permission, Role, permission_role, role_user
from app.models.user import AccountStatus, User

__all__ = [
    "AccountStatus",
    "ActivityEntry",
    "Base",
    "Odontogram",
    "Patient",
    "Permission",
    "Role",
    "Specialist",
    "Specialty",
    "User",
    "permission_role",
    "role_user",
]
