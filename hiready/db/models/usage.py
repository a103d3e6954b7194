from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from hiready.db.base import Base, utcnow


class UsageEvent(Base):
    """
    Append-only log row per consumed interview session.

    Rows are never updated. Counting rows per (user, role kit) drives the
    role-kit-scoped free trial.
    """
    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    access_channel = Column(String, nullable=False)
    role_kit_id = Column(Integer, ForeignKey("role_kits.id"), nullable=True)
    interview_set_id = Column(Integer, ForeignKey("interview_sets.id"), nullable=True)
    session_id = Column(Integer, nullable=True)  # owned by the session service
    interview_type = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_usage_user_role_kit", "user_id", "role_kit_id"),
        Index("idx_usage_user_channel", "user_id", "access_channel"),
    )
