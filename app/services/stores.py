"""SQLAlchemy-backed account and role stores used by registration and admin endpoints."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateEmailError
from app.core.security import hash_password
from app.models import AccountStatus, Role, User, role_user

logger = logging.getLogger(__name__)

# Columns callers may set through create/update; "password" is hashed on the way in.
WRITABLE_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "email",
        "password",
        "status",
        "lang",
        "confirmation_token",
        "confirmation_sent_at",
        "terms_accepted",
        "phone",
        "birthday",
    }
)


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {', '.join(sorted(unknown))}")
    values = dict(fields)
    if "password" in values:
        values["password_hash"] = hash_password(values.pop("password"))
    return values


class SqlAccountStore:
    """Account persistence on a caller-owned Session (one per request)."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._in_atomic = False

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Commit everything done inside the block, or roll all of it back."""
        self._in_atomic = True
        try:
            yield
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        finally:
            self._in_atomic = False

    def _commit(self) -> None:
        if not self._in_atomic:
            self._session.commit()

    def create(self, fields: dict[str, Any]) -> User:
        """Insert an account. The unique index on email decides duplicates, not earlier reads."""
        user = User(**_column_values(fields))
        self._session.add(user)
        try:
            self._session.flush()
        except IntegrityError as e:
            self._session.rollback()
            email = fields.get("email", "")
            logger.info("Account insert rejected by unique email constraint")
            raise DuplicateEmailError(email) from e
        self._commit()
        return user

    def update(self, account_id: int, fields: dict[str, Any]) -> None:
        values = _column_values(fields)
        try:
            self._session.execute(update(User).where(User.id == account_id).values(**values))
            self._session.flush()
        except IntegrityError as e:
            self._session.rollback()
            raise DuplicateEmailError(fields.get("email", "")) from e
        self._commit()

    def find_by_email(self, email: str) -> User | None:
        return self._session.query(User).filter(User.email == email.strip().lower()).first()

    def find_by_id(self, account_id: int) -> User | None:
        return self._session.get(User, account_id)

    def assign_role(self, account_id: int, role_id: int) -> None:
        self._session.execute(role_user.insert().values(user_id=account_id, role_id=role_id))
        self._commit()

    def replace_role(self, account_id: int, role_id: int) -> None:
        """Drop existing role links and assign `role_id` (admin edit form)."""
        self._session.execute(role_user.delete().where(role_user.c.user_id == account_id))
        self.assign_role(account_id, role_id)

    def consume_confirmation_token(self, token: str, issued_after: datetime) -> User | None:
        """
        Single conditional UPDATE: only an unconfirmed account whose token matches and
        was issued after `issued_after` is activated. A replay matches zero rows.
        """
        if not token:
            return None
        user = (
            self._session.query(User)
            .filter(User.confirmation_token == token)
            .first()
        )
        if user is None:
            return None
        result = self._session.execute(
            update(User)
            .where(
                User.id == user.id,
                User.confirmation_token == token,
                User.status == AccountStatus.UNCONFIRMED.value,
                User.confirmation_sent_at >= issued_after,
            )
            .values(status=AccountStatus.ACTIVE.value, confirmation_token=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._session.rollback()
            return None
        self._session.commit()
        self._session.refresh(user)
        return user

    def list_users(self) -> list[User]:
        return self._session.query(User).order_by(User.id).all()


class SqlRoleStore:
    """Role lookups."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_name(self, name: str) -> Role | None:
        return self._session.query(Role).filter(Role.name == name).first()

    def find_by_id(self, role_id: int) -> Role | None:
        return self._session.get(Role, role_id)
