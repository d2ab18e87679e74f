"""ORM models for roles, permissions and their associations."""

from sqlalchemy import Column, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from app.models.base import Base, created_at_column

role_user = Table(
    "role_user",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

permission_role = Table(
    "permission_role",
    Base.metadata,
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(Base):
    """Named capability (e.g. users.manage) granted to roles."""

    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True, index=True)
    display_name = Column(String(100), nullable=True)
    description = Column(String(255), nullable=True)
    created_at = created_at_column()

    roles = relationship("Role", secondary=permission_role, back_populates="permissions")


class Role(Base):
    """Named permission group (user, admin, specialist)."""

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True, index=True)
    display_name = Column(String(100), nullable=True)
    description = Column(String(255), nullable=True)
    created_at = created_at_column()

    users = relationship("User", secondary=role_user, back_populates="roles")
    permissions = relationship(
        "Permission",
        secondary=permission_role,
        back_populates="roles",
        lazy="selectin",
    )
