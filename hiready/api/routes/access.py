"""
Interview access endpoints.

Resolve which channel authorizes a session, start sessions, report
entitlement status and redeem company share links.
"""
import logging
from fastapi import APIRouter, Depends, status

from hiready.db.models.user import User
from hiready.core.auth_dependency import get_current_user_obj
from hiready.core.access_guard import get_resolver, require_session_access
from hiready.schemas.access import (
    AccessTargetRequest,
    AccessDecisionResponse,
    EntitlementStatusResponse,
)
from hiready.services.entitlement_service import AccessDecision, AccessTarget, EntitlementResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/access", tags=["Access"])


@router.post("/check", response_model=AccessDecisionResponse, status_code=status.HTTP_200_OK)
def check_access(
    request: AccessTargetRequest,
    user: User = Depends(get_current_user_obj),
    resolver: EntitlementResolver = Depends(get_resolver),
):
    """
    Preview the access decision without consuming anything.

    Denials are returned with allowed=false rather than as an error status.
    """
    target = AccessTarget(
        role_kit_id=request.role_kit_id,
        job_target_id=request.job_target_id,
        interview_set_id=request.interview_set_id,
        employer_job_id=request.employer_job_id,
    )
    return resolver.resolve(user.id, target).to_dict()


@router.post("/start", response_model=AccessDecisionResponse, status_code=status.HTTP_200_OK)
def start_session(decision: AccessDecision = Depends(require_session_access)):
    """Authorize and record a session start. Responds 403 when access is denied."""
    return decision.to_dict()


@router.get("/status", response_model=EntitlementStatusResponse)
def get_status(
    user: User = Depends(get_current_user_obj),
    resolver: EntitlementResolver = Depends(get_resolver),
):
    entitlement_status = resolver.get_entitlement_status(user.id)
    logger.debug(f"Entitlement status requested: user_id={user.id}, tier={entitlement_status.tier}")
    return entitlement_status


@router.post("/share-links/{share_token}/redeem", response_model=AccessDecisionResponse)
def redeem_share_link(
    share_token: str,
    user: User = Depends(get_current_user_obj),
    resolver: EntitlementResolver = Depends(get_resolver),
):
    return resolver.redeem_share_link(user.id, share_token).to_dict()
