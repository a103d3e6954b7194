"""
Pydantic schemas for access endpoints.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class AccessTargetRequest(BaseModel):
    """What the user wants to practice. Any subset of fields may be set."""
    role_kit_id: Optional[int] = Field(None, description="Role kit the session belongs to")
    job_target_id: Optional[str] = Field(None, description="Job target; its latest interview config supplies the role kit")
    interview_set_id: Optional[int] = Field(None, description="Interview set for purchased or shared access")
    employer_job_id: Optional[str] = Field(None, description="Employer job for sponsored assessments")

    class Config:
        json_schema_extra = {
            "example": {
                "role_kit_id": 3,
                "job_target_id": None,
                "interview_set_id": None,
                "employer_job_id": None
            }
        }


class StartSessionRequest(AccessTargetRequest):
    """Resolve access and consume it for a new session."""
    session_id: Optional[int] = Field(None, description="Interview session being started")
    interview_type: Optional[str] = Field(None, description="behavioral, technical, case_study or coding")


class AccessDecisionResponse(BaseModel):
    allowed: bool = Field(..., description="Whether a session may start")
    channel: str = Field(..., description="Access channel that authorized the session, or 'none'")
    reason: str = Field(..., description="Human-readable explanation")
    free_interviews_remaining: Optional[int] = Field(None, description="Free-trial sessions left after this one")
    role_kit_id: Optional[int] = Field(None, description="Role kit the decision was scoped to")

    class Config:
        json_schema_extra = {
            "example": {
                "allowed": True,
                "channel": "free_trial",
                "reason": "Free trial available (0/1 used)",
                "free_interviews_remaining": 0,
                "role_kit_id": 3
            }
        }


class InterviewSetSummary(BaseModel):
    id: int
    name: str


class EntitlementStatusResponse(BaseModel):
    """Response schema for GET /access/status."""
    tier: str = Field(..., description="free, set_access or subscriber")
    free_interviews_remaining: int = Field(..., description="Free interviews left on the ledger")
    is_subscriber: bool
    subscription_plan: Optional[str] = Field(None, description="pro or role_pack")
    subscription_expires_at: Optional[datetime] = None
    purchased_sets: List[InterviewSetSummary] = Field(default_factory=list)
    shared_sets: List[InterviewSetSummary] = Field(default_factory=list)


class AccessDeniedResponse(BaseModel):
    """Error response schema for a denied session start."""
    error: str = Field("access_denied", description="Error code")
    channel: str = Field("none", description="Always 'none' on denial")
    reason: str = Field(..., description="Why access was denied")
    free_interviews_remaining: Optional[int] = None

    class Config:
        json_schema_extra = {
            "example": {
                "error": "access_denied",
                "channel": "none",
                "reason": "Free trial exhausted. Please purchase a role pack or Pro subscription.",
                "free_interviews_remaining": 0
            }
        }
