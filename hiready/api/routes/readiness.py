"""
Readiness endpoints: record skill signals and read role readiness.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status

from hiready.db.models.user import User
from hiready.core.auth_dependency import get_current_user_obj
from hiready.core.access_guard import get_aggregator
from hiready.schemas.readiness import SkillSignalRequest, SkillSignalResponse, ReadinessResponse
from hiready.services.readiness_service import ReadinessAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/readiness", tags=["Readiness"])


@router.post("/signals", response_model=SkillSignalResponse, status_code=status.HTTP_201_CREATED)
def record_signal(
    request: SkillSignalRequest,
    user: User = Depends(get_current_user_obj),
    aggregator: ReadinessAggregator = Depends(get_aggregator),
):
    estimate = aggregator.record_signal(user.id, request.skill_id, request.strength, request.source)
    return {"skill_id": request.skill_id, "estimate": estimate}


@router.get("", response_model=ReadinessResponse)
def get_readiness(
    role_kit_id: Optional[int] = None,
    job_target_id: Optional[str] = None,
    user: User = Depends(get_current_user_obj),
    aggregator: ReadinessAggregator = Depends(get_aggregator),
):
    """
    Coverage and readiness score for a role kit or job target.

    Requires one of role_kit_id or job_target_id as a query parameter.
    """
    if role_kit_id is None and job_target_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="role_kit_id or job_target_id is required"
        )

    result = aggregator.compute_for_role(user.id, role_kit_id=role_kit_id, job_target_id=job_target_id)
    return {
        "role_kit_id": role_kit_id,
        "job_target_id": job_target_id,
        "score": result.readiness.score,
        "readiness_level": result.readiness.readiness_level,
        "top_gaps": result.readiness.top_gaps,
        "skills": result.coverage.to_dict()["skills"],
    }
