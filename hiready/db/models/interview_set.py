from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from hiready.db.base import Base, utcnow


class InterviewSet(Base):
    __tablename__ = "interview_sets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    interview_types = Column(JSON, nullable=False, default=list)
    price_cents = Column(Integer, default=19900, nullable=False)
    owner_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    visibility = Column(String, default="private", nullable=False)  # private | public | company_shared
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Purchase(Base):
    """
    Interview-set purchase. Completed purchases grant permanent access to one set.
    """
    __tablename__ = "interview_set_purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    interview_set_id = Column(Integer, ForeignKey("interview_sets.id"), nullable=False, index=True)
    stripe_payment_intent_id = Column(String, nullable=False)
    amount_cents = Column(Integer, default=19900, nullable=False)
    status = Column(String, default="completed", nullable=False)  # completed | pending
    purchased_at = Column(DateTime, default=utcnow, nullable=False)

    # Natural key: duplicate webhook delivery must not insert a second row
    __table_args__ = (
        UniqueConstraint("user_id", "interview_set_id", "stripe_payment_intent_id", name="uq_purchase_intent"),
    )
