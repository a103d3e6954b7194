from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from hiready.db.base import Base, utcnow


class Entitlement(Base):
    """
    Durable entitlement ledger, one row per user.

    Created lazily on the first access check and never deleted.
    """
    __tablename__ = "user_entitlements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    tier = Column(String, default="free", nullable=False)  # free | set_access | subscriber
    free_interviews_remaining = Column(Integer, default=1, nullable=False)
    payment_subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("free_interviews_remaining >= 0", name="ck_free_interviews_non_negative"),
    )
