"""
Provision the roles and permissions the application relies on. Idempotent; run after migrations:
  python -m app.scripts.seed_roles
Registration refuses to create accounts until the "user" role exists.
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import session_scope
from app.core.security import PERMISSION_ACTIVITY_VIEW, PERMISSION_USERS_MANAGE
from app.models import Permission, Role

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

DEFAULT_ROLES = (
    ("admin", "Admin", "System administrator."),
    ("user", "User", "Default role for self-registered accounts."),
    ("specialist", "Specialist", "Dentist or clinic specialist."),
)

DEFAULT_PERMISSIONS = (
    (PERMISSION_USERS_MANAGE, "Manage Users", "List, create and edit accounts."),
    (PERMISSION_ACTIVITY_VIEW, "View Activity Log", "Read the audit trail."),
)

ROLE_PERMISSIONS = {
    "admin": (PERMISSION_USERS_MANAGE, PERMISSION_ACTIVITY_VIEW),
}


def seed_permissions(db: Session) -> dict[str, Permission]:
    """Insert missing default permissions; return every default permission by name."""
    permissions = {p.name: p for p in db.query(Permission).all()}
    for name, display_name, description in DEFAULT_PERMISSIONS:
        if name not in permissions:
            permissions[name] = Permission(name=name, display_name=display_name, description=description)
            db.add(permissions[name])
    return permissions


def seed_roles(db: Session) -> list[str]:
    """Insert missing default roles and grant their missing permissions; return the roles created."""
    permissions = seed_permissions(db)
    roles = {r.name: r for r in db.query(Role).all()}
    created = []
    for name, display_name, description in DEFAULT_ROLES:
        role = roles.get(name)
        if role is None:
            role = Role(name=name, display_name=display_name, description=description)
            db.add(role)
            created.append(name)
        for permission_name in ROLE_PERMISSIONS.get(name, ()):
            permission = permissions[permission_name]
            if permission not in role.permissions:
                role.permissions.append(permission)
    return created


def main() -> int:
    try:
        with session_scope() as db:
            created = seed_roles(db)
    except SQLAlchemyError as e:
        logger.exception("Seeding roles failed: %s", e)
        return 1
    logger.info("Roles seeded: created=%s", ",".join(created) or "none")
    return 0


if __name__ == "__main__":
    sys.exit(main())
