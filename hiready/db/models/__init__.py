"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in table creation.
"""
from hiready.db.models.user import User
from hiready.db.models.role import RoleKit, JobTarget, InterviewConfig
from hiready.db.models.subscription import Subscription
from hiready.db.models.entitlement import Entitlement
from hiready.db.models.interview_set import InterviewSet, Purchase
from hiready.db.models.share_link import CompanyShareLink, ShareLinkAccess
from hiready.db.models.employer import EmployerJob, EmployerCandidate
from hiready.db.models.usage import UsageEvent
from hiready.db.models.skill import Skill, RoleSkillRequirement, SkillSignal, SkillEstimate

# Explicitly export all models for clarity
__all__ = [
    "User",
    "RoleKit",
    "JobTarget",
    "InterviewConfig",
    "Subscription",
    "Entitlement",
    "InterviewSet",
    "Purchase",
    "CompanyShareLink",
    "ShareLinkAccess",
    "EmployerJob",
    "EmployerCandidate",
    "UsageEvent",
    "Skill",
    "RoleSkillRequirement",
    "SkillSignal",
    "SkillEstimate",
]
