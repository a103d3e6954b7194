"""
Access enforcement dependencies for interview sessions.

This module wires the decision services to a request-scoped session and
provides require_session_access() which:
1. Authenticates the user
2. Resolves the access channel for the requested target
3. Consumes the channel (spending a free interview when that is the channel)
4. Raises HTTPException 403 if access is denied or the last free interview was lost
"""
import logging
from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from hiready.db.session import get_db
from hiready.db.models.user import User
from hiready.core.auth_dependency import get_current_user_obj
from hiready.core.config import get_settings
from hiready.schemas.access import StartSessionRequest
from hiready.services.entitlement_service import (
    AccessChannel,
    AccessDecision,
    AccessTarget,
    ConsumeContext,
    EntitlementResolver,
    REASON_TRIAL_EXHAUSTED,
)
from hiready.services.readiness_service import ReadinessAggregator
from hiready.services.storage import SqlAlchemyEntitlementStore, SqlAlchemySkillStore

logger = logging.getLogger(__name__)


def get_resolver(db: Session = Depends(get_db)) -> EntitlementResolver:
    return EntitlementResolver(SqlAlchemyEntitlementStore(db), settings=get_settings())


def get_aggregator(db: Session = Depends(get_db)) -> ReadinessAggregator:
    return ReadinessAggregator(SqlAlchemySkillStore(db), settings=get_settings())


def access_denied(decision: AccessDecision) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error": "access_denied",
            "channel": decision.channel.value,
            "reason": decision.reason,
            "free_interviews_remaining": decision.free_interviews_remaining,
        }
    )


def require_session_access(
    request: StartSessionRequest,
    user: User = Depends(get_current_user_obj),
    resolver: EntitlementResolver = Depends(get_resolver),
) -> AccessDecision:
    """
    Dependency that authorizes and records the start of an interview session.

    Returns:
        The AccessDecision that authorized the session

    Raises:
        HTTPException 403: Access denied, with structured error detail
        HTTPException 401: Unauthorized
        HTTPException 404: User not found
    """
    target = AccessTarget(
        role_kit_id=request.role_kit_id,
        job_target_id=request.job_target_id,
        interview_set_id=request.interview_set_id,
        employer_job_id=request.employer_job_id,
    )
    decision = resolver.resolve(user.id, target)
    if not decision.allowed:
        logger.warning(f"Session start denied: user_id={user.id}, reason={decision.reason}")
        raise access_denied(decision)

    context = ConsumeContext(
        role_kit_id=decision.role_kit_id or request.role_kit_id,
        interview_set_id=request.interview_set_id,
        session_id=request.session_id,
        interview_type=request.interview_type,
    )
    if not resolver.consume(user.id, decision.channel, context):
        # Another request spent the last free interview between resolve and consume
        lost = AccessDecision(
            allowed=False,
            channel=AccessChannel.NONE,
            reason=REASON_TRIAL_EXHAUSTED,
            free_interviews_remaining=0,
        )
        raise access_denied(lost)

    logger.debug(f"Session access granted: user_id={user.id}, channel={decision.channel.value}")
    return decision
