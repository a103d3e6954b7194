"""
Skill signal models.

SkillSignal is the raw observation log; SkillEstimate holds the blended
running value per (user, skill). Coverage is derived at read time and never stored.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, UniqueConstraint, Index, CheckConstraint
from hiready.db.base import Base, utcnow


class Skill(Base):
    __tablename__ = "skills"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)


class RoleSkillRequirement(Base):
    """Blueprint row: a skill a role kit or job target requires, with its weight."""
    __tablename__ = "role_skill_requirements"

    id = Column(Integer, primary_key=True, index=True)
    role_kit_id = Column(Integer, ForeignKey("role_kits.id"), nullable=True, index=True)
    job_target_id = Column(String, ForeignKey("job_targets.id"), nullable=True, index=True)
    skill_id = Column(Integer, nullable=False)
    weight = Column(Float, default=1.0, nullable=False)

    __table_args__ = (
        CheckConstraint("weight >= 0", name="ck_requirement_weight_non_negative"),
    )


class SkillSignal(Base):
    __tablename__ = "skill_signals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # Not a foreign key: signals for skills outside any blueprint are still kept
    skill_id = Column(Integer, nullable=False)
    strength = Column(Float, nullable=False)
    source = Column(String, nullable=False)  # explicit | inferred
    alpha = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_signal_user_skill", "user_id", "skill_id"),
    )


class SkillEstimate(Base):
    __tablename__ = "skill_estimates"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    skill_id = Column(Integer, nullable=False)
    estimate = Column(Float, default=0.0, nullable=False)
    signal_count = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "skill_id", name="uq_user_skill_estimate"),
    )
