"""
Storage interfaces for the access and readiness core.

The decision services depend only on the abstract stores below. Every
atomicity guarantee the services rely on (conditional decrement, share-link
grant, in-place skill blend) is part of the store contract, so the services
carry no transaction-control code of their own.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update, or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from hiready.core.errors import InvalidInputError, StorageUnavailableError
from hiready.db.base import utcnow
from hiready.db.models.entitlement import Entitlement
from hiready.db.models.subscription import Subscription
from hiready.db.models.interview_set import InterviewSet, Purchase
from hiready.db.models.share_link import CompanyShareLink, ShareLinkAccess
from hiready.db.models.employer import EmployerCandidate
from hiready.db.models.role import InterviewConfig
from hiready.db.models.usage import UsageEvent
from hiready.db.models.skill import RoleSkillRequirement, SkillSignal, SkillEstimate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequiredSkill:
    """A skill a role requires, with its relative importance."""
    skill_id: int
    weight: float = 1.0


class EntitlementStore(ABC):
    """Data access needed by the entitlement resolver."""

    @abstractmethod
    def get_entitlement(self, user_id: int) -> Optional[Entitlement]:
        pass

    @abstractmethod
    def create_entitlement(self, user_id: int, free_interviews: int = 1) -> Entitlement:
        """Create the ledger row; returns the existing row if one already exists."""
        pass

    @abstractmethod
    def decrement_free_trial(
        self,
        user_id: int,
        commit: bool = True,
        role_kit_id: Optional[int] = None,
        session_limit: Optional[int] = None,
    ) -> bool:
        """
        Atomically take one free interview. False if none was available.

        With role_kit_id and session_limit, the unit is only taken while the
        user has fewer than session_limit recorded sessions for that role kit,
        checked inside the same transaction as the decrement.
        """
        pass

    @abstractmethod
    def get_active_subscription(
        self,
        user_id: int,
        plan_type: str,
        role_kit_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """Most recent active subscription whose period contains now."""
        pass

    @abstractmethod
    def resolve_role_kit_for_job(self, job_target_id: str) -> Optional[int]:
        pass

    @abstractmethod
    def get_purchase(self, user_id: int, interview_set_id: int) -> Optional[Purchase]:
        pass

    @abstractmethod
    def record_purchase(
        self,
        user_id: int,
        interview_set_id: int,
        payment_intent_id: str,
        amount_cents: int,
    ) -> Tuple[Purchase, bool]:
        """Insert-if-absent on (user, set, payment intent). Returns (purchase, created)."""
        pass

    @abstractmethod
    def get_share_link(self, share_link_id: int) -> Optional[CompanyShareLink]:
        pass

    @abstractmethod
    def get_share_link_by_token(self, share_token: str) -> Optional[CompanyShareLink]:
        pass

    @abstractmethod
    def get_share_link_access(self, user_id: int, share_link_id: int) -> bool:
        pass

    @abstractmethod
    def has_shared_access_to_set(self, user_id: int, interview_set_id: int, now: Optional[datetime] = None) -> bool:
        """True if a recorded grant exists through a link that is still active and unexpired."""
        pass

    @abstractmethod
    def grant_share_link_access(self, user_id: int, share_link_id: int, now: Optional[datetime] = None) -> bool:
        """
        Grant access through a share link.

        Existing grants return True without touching the use counter. New grants
        increment the counter and insert the grant row in one transaction, and
        are refused (False) when the link is inactive, expired or at max uses.
        """
        pass

    @abstractmethod
    def get_sponsorship(self, user_id: int, employer_job_id: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    def count_prior_sessions(self, user_id: int, role_kit_id: int) -> int:
        pass

    @abstractmethod
    def append_usage_event(
        self,
        user_id: int,
        access_channel: str,
        role_kit_id: Optional[int] = None,
        interview_set_id: Optional[int] = None,
        session_id: Optional[int] = None,
        interview_type: Optional[str] = None,
        commit: bool = True,
    ) -> UsageEvent:
        pass

    @abstractmethod
    def get_latest_subscription(self, user_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
        """Most recent active, unexpired subscription of any plan."""
        pass

    @abstractmethod
    def get_subscription_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    def list_purchased_sets(self, user_id: int) -> List[InterviewSet]:
        pass

    @abstractmethod
    def list_shared_sets(self, user_id: int) -> List[InterviewSet]:
        pass

    @abstractmethod
    def create_subscription(self, user_id: int, plan_type: str, **fields) -> Subscription:
        pass

    @abstractmethod
    def cancel_subscriptions(self, user_id: int, stripe_subscription_id: Optional[str] = None) -> int:
        pass

    @abstractmethod
    def set_entitlement_tier(self, user_id: int, tier: str, payment_subscription_id: Optional[int] = None) -> None:
        pass


class SkillStore(ABC):
    """Aggregate read/write access to skill signals."""

    @abstractmethod
    def get_skill_estimate(self, user_id: int, skill_id: int) -> float:
        """Current blended estimate, 0.0 when the skill was never observed."""
        pass

    @abstractmethod
    def get_skill_estimates(self, user_id: int, skill_ids: Iterable[int]) -> Dict[int, float]:
        pass

    @abstractmethod
    def blend_skill_estimate(self, user_id: int, skill_id: int, strength: float, alpha: float, source: str) -> float:
        """
        Append the signal and blend it into the estimate in place.

        new = alpha * strength + (1 - alpha) * old, with old = 0.0 for an
        unobserved skill. Concurrent blends for one key must not lose updates.
        Returns the new estimate.
        """
        pass

    @abstractmethod
    def upsert_skill_estimate(self, user_id: int, skill_id: int, estimate: float) -> None:
        pass

    @abstractmethod
    def get_role_required_skills(
        self,
        role_kit_id: Optional[int] = None,
        job_target_id: Optional[str] = None,
    ) -> List[RequiredSkill]:
        pass


def _storage_call(method):
    """Roll back and re-raise database failures as StorageUnavailableError."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception(f"Storage call failed: {method.__name__}")
            try:
                self.db.rollback()
            except SQLAlchemyError:
                logger.error(f"Rollback failed after {method.__name__}")
            raise StorageUnavailableError(f"Storage unavailable during {method.__name__}") from e
    return wrapper


class SqlAlchemyEntitlementStore(EntitlementStore):
    """EntitlementStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @_storage_call
    def get_entitlement(self, user_id: int) -> Optional[Entitlement]:
        return self.db.query(Entitlement).filter(Entitlement.user_id == user_id).first()

    @_storage_call
    def create_entitlement(self, user_id: int, free_interviews: int = 1) -> Entitlement:
        entitlement = Entitlement(
            user_id=user_id,
            tier="free",
            free_interviews_remaining=free_interviews,
        )
        self.db.add(entitlement)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Another request created the ledger row first, or the user does not exist
            self.db.rollback()
            existing = self.db.query(Entitlement).filter(Entitlement.user_id == user_id).first()
            if existing is None:
                raise InvalidInputError(f"Cannot create entitlement for unknown user_id={user_id}") from e
            return existing
        self.db.refresh(entitlement)
        logger.info(f"Entitlement created: user_id={user_id}, free_interviews={free_interviews}")
        return entitlement

    @_storage_call
    def decrement_free_trial(
        self,
        user_id: int,
        commit: bool = True,
        role_kit_id: Optional[int] = None,
        session_limit: Optional[int] = None,
    ) -> bool:
        result = self.db.execute(
            update(Entitlement)
            .where(
                Entitlement.user_id == user_id,
                Entitlement.free_interviews_remaining > 0,
            )
            .values(
                free_interviews_remaining=Entitlement.free_interviews_remaining - 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        if applied and role_kit_id is not None and session_limit is not None:
            # The ledger row is write-locked now, so concurrent starts for this user queue here
            if self._count_sessions(user_id, role_kit_id) >= session_limit:
                logger.warning(f"Role kit trial already used: user_id={user_id}, role_kit_id={role_kit_id}")
                applied = False
        if not applied:
            self.db.rollback()
        elif commit:
            self.db.commit()
        return applied

    @_storage_call
    def get_active_subscription(
        self,
        user_id: int,
        plan_type: str,
        role_kit_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        query = self._active_subscriptions(user_id, now or utcnow()).filter(
            Subscription.plan_type == plan_type
        )
        if role_kit_id is not None:
            query = query.filter(Subscription.role_kit_id == role_kit_id)
        return query.order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()

    @_storage_call
    def get_latest_subscription(self, user_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
        return (
            self._active_subscriptions(user_id, now or utcnow())
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def _active_subscriptions(self, user_id: int, now: datetime):
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            or_(Subscription.current_period_start.is_(None), Subscription.current_period_start <= now),
            or_(Subscription.current_period_end.is_(None), Subscription.current_period_end > now),
        )

    @_storage_call
    def resolve_role_kit_for_job(self, job_target_id: str) -> Optional[int]:
        config = (
            self.db.query(InterviewConfig)
            .filter(
                InterviewConfig.job_target_id == job_target_id,
                InterviewConfig.role_kit_id.isnot(None),
            )
            .order_by(InterviewConfig.created_at.desc(), InterviewConfig.id.desc())
            .first()
        )
        return config.role_kit_id if config else None

    @_storage_call
    def get_purchase(self, user_id: int, interview_set_id: int) -> Optional[Purchase]:
        return (
            self.db.query(Purchase)
            .filter(
                Purchase.user_id == user_id,
                Purchase.interview_set_id == interview_set_id,
                Purchase.status == "completed",
            )
            .first()
        )

    @_storage_call
    def record_purchase(
        self,
        user_id: int,
        interview_set_id: int,
        payment_intent_id: str,
        amount_cents: int,
    ) -> Tuple[Purchase, bool]:
        existing = self._find_purchase(user_id, interview_set_id, payment_intent_id)
        if existing:
            return existing, False

        purchase = Purchase(
            user_id=user_id,
            interview_set_id=interview_set_id,
            stripe_payment_intent_id=payment_intent_id,
            amount_cents=amount_cents,
            status="completed",
        )
        self.db.add(purchase)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same payment won the insert
            self.db.rollback()
            existing = self._find_purchase(user_id, interview_set_id, payment_intent_id)
            if existing is None:
                raise
            return existing, False
        self.db.refresh(purchase)
        return purchase, True

    def _find_purchase(self, user_id: int, interview_set_id: int, payment_intent_id: str) -> Optional[Purchase]:
        return (
            self.db.query(Purchase)
            .filter(
                Purchase.user_id == user_id,
                Purchase.interview_set_id == interview_set_id,
                Purchase.stripe_payment_intent_id == payment_intent_id,
            )
            .first()
        )

    @_storage_call
    def get_share_link(self, share_link_id: int) -> Optional[CompanyShareLink]:
        return self.db.query(CompanyShareLink).filter(CompanyShareLink.id == share_link_id).first()

    @_storage_call
    def get_share_link_by_token(self, share_token: str) -> Optional[CompanyShareLink]:
        return self.db.query(CompanyShareLink).filter(CompanyShareLink.share_token == share_token).first()

    @_storage_call
    def get_share_link_access(self, user_id: int, share_link_id: int) -> bool:
        return self._find_share_access(user_id, share_link_id) is not None

    def _find_share_access(self, user_id: int, share_link_id: int) -> Optional[ShareLinkAccess]:
        return (
            self.db.query(ShareLinkAccess)
            .filter(
                ShareLinkAccess.user_id == user_id,
                ShareLinkAccess.share_link_id == share_link_id,
            )
            .first()
        )

    @_storage_call
    def has_shared_access_to_set(self, user_id: int, interview_set_id: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        grant = (
            self.db.query(ShareLinkAccess.id)
            .join(CompanyShareLink, CompanyShareLink.id == ShareLinkAccess.share_link_id)
            .filter(
                ShareLinkAccess.user_id == user_id,
                ShareLinkAccess.interview_set_id == interview_set_id,
                CompanyShareLink.is_active.is_(True),
                or_(CompanyShareLink.expires_at.is_(None), CompanyShareLink.expires_at > now),
            )
            .first()
        )
        return grant is not None

    @_storage_call
    def grant_share_link_access(self, user_id: int, share_link_id: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if self._find_share_access(user_id, share_link_id) is not None:
            return True

        link = self.get_share_link(share_link_id)
        if link is None:
            return False
        interview_set_id = link.interview_set_id

        # Conditional increment: expiry and use limit are checked against the live row
        result = self.db.execute(
            update(CompanyShareLink)
            .where(
                CompanyShareLink.id == share_link_id,
                CompanyShareLink.is_active.is_(True),
                or_(CompanyShareLink.expires_at.is_(None), CompanyShareLink.expires_at > now),
                or_(
                    CompanyShareLink.max_uses.is_(None),
                    CompanyShareLink.current_uses < CompanyShareLink.max_uses,
                ),
            )
            .values(current_uses=CompanyShareLink.current_uses + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.warning(f"Share link grant refused: share_link_id={share_link_id}, user_id={user_id}")
            return False

        self.db.add(ShareLinkAccess(
            share_link_id=share_link_id,
            user_id=user_id,
            interview_set_id=interview_set_id,
            accessed_at=now,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Same user was granted concurrently; our increment is rolled back with the insert
            self.db.rollback()
            return True

        logger.info(f"Share link access granted: share_link_id={share_link_id}, user_id={user_id}")
        return True

    @_storage_call
    def get_sponsorship(self, user_id: int, employer_job_id: Optional[str] = None) -> bool:
        query = self.db.query(EmployerCandidate.id).filter(EmployerCandidate.user_id == user_id)
        if employer_job_id is not None:
            query = query.filter(EmployerCandidate.job_id == employer_job_id)
        return query.first() is not None

    @_storage_call
    def count_prior_sessions(self, user_id: int, role_kit_id: int) -> int:
        return self._count_sessions(user_id, role_kit_id)

    def _count_sessions(self, user_id: int, role_kit_id: int) -> int:
        count = (
            self.db.query(func.count(UsageEvent.id))
            .filter(
                UsageEvent.user_id == user_id,
                UsageEvent.role_kit_id == role_kit_id,
            )
            .scalar()
        )
        return int(count or 0)

    @_storage_call
    def append_usage_event(
        self,
        user_id: int,
        access_channel: str,
        role_kit_id: Optional[int] = None,
        interview_set_id: Optional[int] = None,
        session_id: Optional[int] = None,
        interview_type: Optional[str] = None,
        commit: bool = True,
    ) -> UsageEvent:
        event = UsageEvent(
            user_id=user_id,
            access_channel=access_channel,
            role_kit_id=role_kit_id,
            interview_set_id=interview_set_id,
            session_id=session_id,
            interview_type=interview_type,
        )
        self.db.add(event)
        if commit:
            self.db.commit()
            self.db.refresh(event)
        else:
            self.db.flush()
        return event

    @_storage_call
    def get_subscription_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.stripe_subscription_id == stripe_subscription_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    @_storage_call
    def list_purchased_sets(self, user_id: int) -> List[InterviewSet]:
        return (
            self.db.query(InterviewSet)
            .join(Purchase, Purchase.interview_set_id == InterviewSet.id)
            .filter(Purchase.user_id == user_id, Purchase.status == "completed")
            .distinct()
            .order_by(InterviewSet.id)
            .all()
        )

    @_storage_call
    def list_shared_sets(self, user_id: int) -> List[InterviewSet]:
        return (
            self.db.query(InterviewSet)
            .join(ShareLinkAccess, ShareLinkAccess.interview_set_id == InterviewSet.id)
            .filter(ShareLinkAccess.user_id == user_id)
            .distinct()
            .order_by(InterviewSet.id)
            .all()
        )

    @_storage_call
    def create_subscription(self, user_id: int, plan_type: str, **fields) -> Subscription:
        subscription = Subscription(user_id=user_id, plan_type=plan_type, status="active", **fields)
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    @_storage_call
    def cancel_subscriptions(self, user_id: int, stripe_subscription_id: Optional[str] = None) -> int:
        now = utcnow()
        statement = update(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == "active",
        )
        if stripe_subscription_id is not None:
            statement = statement.where(Subscription.stripe_subscription_id == stripe_subscription_id)
        result = self.db.execute(
            statement.values(status="canceled", canceled_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    @_storage_call
    def set_entitlement_tier(self, user_id: int, tier: str, payment_subscription_id: Optional[int] = None) -> None:
        self.db.execute(
            update(Entitlement)
            .where(Entitlement.user_id == user_id)
            .values(tier=tier, payment_subscription_id=payment_subscription_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()


class SqlAlchemySkillStore(SkillStore):
    """SkillStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @_storage_call
    def get_skill_estimate(self, user_id: int, skill_id: int) -> float:
        value = (
            self.db.query(SkillEstimate.estimate)
            .filter(SkillEstimate.user_id == user_id, SkillEstimate.skill_id == skill_id)
            .scalar()
        )
        return float(value) if value is not None else 0.0

    @_storage_call
    def get_skill_estimates(self, user_id: int, skill_ids: Iterable[int]) -> Dict[int, float]:
        skill_ids = list(skill_ids)
        if not skill_ids:
            return {}
        rows = (
            self.db.query(SkillEstimate.skill_id, SkillEstimate.estimate)
            .filter(SkillEstimate.user_id == user_id, SkillEstimate.skill_id.in_(skill_ids))
            .all()
        )
        found = {skill_id: float(estimate) for skill_id, estimate in rows}
        return {skill_id: found.get(skill_id, 0.0) for skill_id in skill_ids}

    @_storage_call
    def blend_skill_estimate(self, user_id: int, skill_id: int, strength: float, alpha: float, source: str) -> float:
        if not self._blend_in_place(user_id, skill_id, strength, alpha):
            self.db.add(SkillEstimate(
                user_id=user_id,
                skill_id=skill_id,
                estimate=alpha * strength,
                signal_count=1,
            ))
            try:
                self.db.flush()
            except IntegrityError:
                # A concurrent first signal created the row; blend into it instead
                self.db.rollback()
                if not self._blend_in_place(user_id, skill_id, strength, alpha):
                    raise

        self.db.add(SkillSignal(
            user_id=user_id,
            skill_id=skill_id,
            strength=strength,
            source=source,
            alpha=alpha,
        ))

        new_estimate = (
            self.db.query(SkillEstimate.estimate)
            .filter(SkillEstimate.user_id == user_id, SkillEstimate.skill_id == skill_id)
            .scalar()
        )
        self.db.commit()
        return float(new_estimate)

    def _blend_in_place(self, user_id: int, skill_id: int, strength: float, alpha: float) -> bool:
        # Single UPDATE so the read-blend-write cannot interleave with another writer
        result = self.db.execute(
            update(SkillEstimate)
            .where(SkillEstimate.user_id == user_id, SkillEstimate.skill_id == skill_id)
            .values(
                estimate=alpha * strength + (1.0 - alpha) * SkillEstimate.estimate,
                signal_count=SkillEstimate.signal_count + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @_storage_call
    def upsert_skill_estimate(self, user_id: int, skill_id: int, estimate: float) -> None:
        row = (
            self.db.query(SkillEstimate)
            .filter(SkillEstimate.user_id == user_id, SkillEstimate.skill_id == skill_id)
            .first()
        )
        if row:
            row.estimate = estimate
        else:
            self.db.add(SkillEstimate(user_id=user_id, skill_id=skill_id, estimate=estimate, signal_count=0))
        self.db.commit()

    @_storage_call
    def get_role_required_skills(
        self,
        role_kit_id: Optional[int] = None,
        job_target_id: Optional[str] = None,
    ) -> List[RequiredSkill]:
        rows = []
        if job_target_id is not None:
            rows = self._requirements(RoleSkillRequirement.job_target_id == job_target_id)
            if not rows and role_kit_id is None:
                config = (
                    self.db.query(InterviewConfig.role_kit_id)
                    .filter(
                        InterviewConfig.job_target_id == job_target_id,
                        InterviewConfig.role_kit_id.isnot(None),
                    )
                    .order_by(InterviewConfig.created_at.desc(), InterviewConfig.id.desc())
                    .first()
                )
                role_kit_id = config[0] if config else None
        if not rows and role_kit_id is not None:
            rows = self._requirements(RoleSkillRequirement.role_kit_id == role_kit_id)
        return [RequiredSkill(skill_id=row.skill_id, weight=float(row.weight)) for row in rows]

    def _requirements(self, criterion) -> List[RoleSkillRequirement]:
        return (
            self.db.query(RoleSkillRequirement)
            .filter(criterion)
            .order_by(RoleSkillRequirement.id)
            .all()
        )
