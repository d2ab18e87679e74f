"""Narrow interfaces the registration workflow depends on.

Concrete adapters live in app.services.stores (SQLAlchemy), app.services.audit
and app.services.notifications; tests substitute in-memory fakes.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Protocol


class Account(Protocol):
    id: int
    email: str
    first_name: str
    last_name: str
    status: str


class Role(Protocol):
    id: int
    name: str


class AccountStore(Protocol):
    def atomic(self) -> AbstractContextManager[None]:
        """Everything inside commits together or not at all."""
        ...

    def create(self, fields: dict[str, Any]) -> Account:
        """Insert an account; raises DuplicateEmailError on the unique email constraint."""
        ...

    def update(self, account_id: int, fields: dict[str, Any]) -> None: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: int) -> Account | None: ...

    def assign_role(self, account_id: int, role_id: int) -> None: ...

    def consume_confirmation_token(self, token: str, issued_after: datetime) -> Account | None:
        """Activate the unconfirmed account holding `token` and clear it; None if nothing matched."""
        ...


class RoleStore(Protocol):
    def find_by_name(self, name: str) -> Role | None: ...


class NotificationSender(Protocol):
    async def send_confirmation(self, account: Any, token: str) -> None:
        """Hand a confirmation message to the transport; raises DeliveryTransientError."""
        ...


class AuditLogger(Protocol):
    def record(self, actor: str, message: str, subject: Any) -> None:
        """Append an audit entry; raises AuditWriteFailure."""
        ...

