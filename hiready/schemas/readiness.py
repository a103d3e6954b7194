"""
Pydantic schemas for readiness endpoints.
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class SkillSignalRequest(BaseModel):
    skill_id: int = Field(..., description="Skill the observation is about")
    strength: float = Field(..., description="Observed strength in [0, 1]")
    source: str = Field("inferred", description="explicit (confirmed mapping) or inferred (transcript)")

    class Config:
        json_schema_extra = {
            "example": {
                "skill_id": 12,
                "strength": 0.8,
                "source": "explicit"
            }
        }


class SkillSignalResponse(BaseModel):
    skill_id: int
    estimate: float = Field(..., description="Blended estimate after this signal")


class SkillCoverageItem(BaseModel):
    skill_id: int
    weight: float
    estimate: float
    status: str = Field(..., description="gap, partial or covered")


class ReadinessResponse(BaseModel):
    """Response schema for GET /readiness."""
    role_kit_id: Optional[int] = None
    job_target_id: Optional[str] = None
    score: int = Field(..., description="Weighted readiness score, 0-100")
    readiness_level: str = Field(..., description="not_ready, developing, ready, strong or exceptional")
    top_gaps: List[int] = Field(..., description="Least covered skill ids, most urgent first")
    skills: List[SkillCoverageItem] = Field(..., description="Per-skill coverage")

    class Config:
        json_schema_extra = {
            "example": {
                "role_kit_id": 3,
                "job_target_id": None,
                "score": 56,
                "readiness_level": "ready",
                "top_gaps": [7],
                "skills": [
                    {"skill_id": 5, "weight": 1.0, "estimate": 0.8, "status": "covered"},
                    {"skill_id": 7, "weight": 1.0, "estimate": 0.32, "status": "gap"}
                ]
            }
        }
