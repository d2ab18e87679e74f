"""ORM model for the append-only audit trail."""

from sqlalchemy import Column, ForeignKey, Integer, String, Text

from app.models.base import Base, created_at_column


class ActivityEntry(Base):
    """
    One audit record: who (actor category) did what to which account.

    actor: 'user', 'system' or 'admin'. Rows are never updated.
    """

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    actor = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    created_at = created_at_column()
