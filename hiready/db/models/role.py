"""
Role targeting models: role kits, job targets and the interview configs that link them.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from hiready.db.base import Base, utcnow


class RoleKit(Base):
    __tablename__ = "role_kits"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    level = Column(String, nullable=True)  # entry | mid | senior
    domain = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class JobTarget(Base):
    __tablename__ = "job_targets"

    id = Column(String, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role_title = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class InterviewConfig(Base):
    """Interview setup for a job target; its role kit scopes trials and role packs."""
    __tablename__ = "interview_configs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role_kit_id = Column(Integer, ForeignKey("role_kits.id"), nullable=True)
    job_target_id = Column(String, ForeignKey("job_targets.id"), nullable=True)
    interview_type = Column(String, nullable=True)  # behavioral | technical | case_study | coding
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_config_job_created", "job_target_id", "created_at"),
    )
