from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from hiready.db.base import Base, utcnow


class EmployerJob(Base):
    __tablename__ = "employer_jobs"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class EmployerCandidate(Base):
    """Sponsorship record: the employer covers sessions for this job."""
    __tablename__ = "employer_candidates"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    job_id = Column(String, ForeignKey("employer_jobs.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "job_id", name="uq_candidate_job"),
    )
