"""Audit trail writer and reader for account-affecting actions."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.database import SessionLocal, session_scope
from app.core.errors import AuditWriteFailure
from app.models import ActivityEntry

logger = logging.getLogger(__name__)

ACTOR_USER = "user"
ACTOR_SYSTEM = "system"
ACTOR_ADMIN = "admin"

MAX_ACTIVITY_LIMIT = 100


class SqlAuditLogger:
    """
    Writes each entry in its own session and transaction, so a failed audit
    write can never roll back (or be rolled back with) the caller's work.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def record(self, actor: str, message: str, subject: Any) -> None:
        """Append one entry for `subject` (anything with an `id`). Raises AuditWriteFailure."""
        subject_id = getattr(subject, "id", None)
        try:
            with session_scope(self._session_factory) as db:
                db.add(ActivityEntry(user_id=subject_id, actor=actor, description=message))
        except SQLAlchemyError as e:
            raise AuditWriteFailure(f"Could not write audit entry: {type(e).__name__}") from e


def list_activity(db: Session, limit: int = 50, user_id: int | None = None) -> list[ActivityEntry]:
    """Most recent entries first, optionally for one account. Limit clamped to 1..100."""
    limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))
    query = db.query(ActivityEntry)
    if user_id is not None:
        query = query.filter(ActivityEntry.user_id == user_id)
    return query.order_by(ActivityEntry.id.desc()).limit(limit).all()


def record_safely(audit: Any, actor: str, message: str, subject: Any) -> bool:
    """Best-effort audit write: failures are logged, never raised. Returns True when written."""
    try:
        audit.record(actor, message, subject)
    except AuditWriteFailure as e:
        logger.warning(
            "Audit write failed",
            extra={
                "actor": actor,
                "audit_message": message,
                "account_id": getattr(subject, "id", None),
                "reason": e.message[:200],
            },
        )
        return False
    return True
