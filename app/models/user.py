"""ORM model for clinic accounts (registration, auth and RBAC)."""

from enum import Enum

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, created_at_column, updated_at_column
from app.models.role import role_user


class AccountStatus(str, Enum):
    """Account lifecycle states. Registration only ever assigns UNCONFIRMED or ACTIVE."""

    UNCONFIRMED = "Unconfirmed"
    ACTIVE = "Active"
    BANNED = "Banned"


class User(Base):
    """
    Registered account.

    confirmation_token is set only while status is Unconfirmed and is cleared
    when the token is consumed. password_hash is bcrypt; plain passwords never
    reach this table.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(30), nullable=False)
    last_name = Column(String(30), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=AccountStatus.ACTIVE.value, index=True)
    lang = Column(String(2), nullable=False, default="es")
    confirmation_token = Column(String(100), nullable=True, unique=True)
    confirmation_sent_at = Column(DateTime(timezone=True), nullable=True)
    terms_accepted = Column(Boolean, nullable=True)
    phone = Column(String(30), nullable=True)
    birthday = Column(Date, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    roles = relationship("Role", secondary=role_user, back_populates="users", lazy="selectin")

    @property
    def role_name(self) -> str:
        """Name of the primary role (accounts carry exactly one in practice)."""
        return self.roles[0].name if self.roles else ""

    @property
    def permission_names(self) -> list[str]:
        """Sorted union of the permissions granted by every role."""
        return sorted({p.name for role in self.roles for p in role.permissions})
