from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from hiready.db.base import Base, utcnow


class CompanyShareLink(Base):
    __tablename__ = "company_share_links"

    id = Column(Integer, primary_key=True, index=True)
    interview_set_id = Column(Integer, ForeignKey("interview_sets.id"), nullable=False, index=True)
    share_token = Column(String, unique=True, index=True, nullable=False)
    company_name = Column(String, nullable=False)
    company_email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ShareLinkAccess(Base):
    """One grant per (link, user); re-access never counts against the link again."""
    __tablename__ = "company_share_link_access"

    id = Column(Integer, primary_key=True, index=True)
    share_link_id = Column(Integer, ForeignKey("company_share_links.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    interview_set_id = Column(Integer, ForeignKey("interview_sets.id"), nullable=False, index=True)
    accessed_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("share_link_id", "user_id", name="uq_share_link_user"),
    )
