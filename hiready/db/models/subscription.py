from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from hiready.db.base import Base, utcnow


class Subscription(Base):
    """
    A paid plan held by a user.

    A user may accumulate many rows over time; reactivation inserts a new row.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    plan_type = Column(String, nullable=False)  # pro | role_pack
    status = Column(String, default="active", nullable=False)  # active | past_due | canceled
    role_kit_id = Column(Integer, ForeignKey("role_kits.id"), nullable=True)  # role_pack scope

    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)

    __table_args__ = (
        Index("idx_subscription_lookup", "user_id", "plan_type", "status"),
    )
