"""
Entitlement resolution for interview sessions.

Decides whether a user may start a session, which access channel
authorizes it, and records consumption once the session starts.

Precedence is a first-class rule table (ACCESS_RULES): rules are evaluated
in order and the first one that returns a decision wins. Sponsorship and
subscriptions come first so they are never blocked by a missing role.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from hiready.core.config import AccessSettings, get_settings
from hiready.core.errors import InvalidInputError
from hiready.core.logging_config import sanitize_log_data
from hiready.db.base import utcnow, as_naive_utc
from hiready.db.models.entitlement import Entitlement
from hiready.db.models.interview_set import Purchase
from hiready.db.models.share_link import CompanyShareLink
from hiready.db.models.subscription import Subscription
from hiready.services.storage import EntitlementStore

logger = logging.getLogger(__name__)


class AccessChannel(str, Enum):
    EMPLOYER_SPONSORED = "employer_sponsored"
    SUBSCRIPTION_PRO = "subscription_pro"
    SUBSCRIPTION_ROLE_PACK = "subscription_role_pack"
    PURCHASED_SET = "purchased_set"
    COMPANY_SHARED = "company_shared"
    FREE_TRIAL = "free_trial"
    NONE = "none"


PLAN_TYPES = ("pro", "role_pack")

REASON_EMPLOYER_SPONSORED = "Employer-sponsored assessment - no payment required"
REASON_PRO = "Active Pro subscription - unlimited access"
REASON_ROLE_PACK = "Role pack subscription active"
REASON_PURCHASED = "Purchased interview set"
REASON_COMPANY_SHARED = "Access granted via company share link"
REASON_ROLE_REQUIRED = "Role selection required. Please select a role to determine pricing."
REASON_TRIAL_EXHAUSTED = "Free trial exhausted. Please purchase a role pack or Pro subscription."
REASON_NO_ACCESS = "No access - no sponsorship, subscription, purchase or free trial applies"


@dataclass(frozen=True)
class AccessTarget:
    """What the caller wants to practice. Any subset of fields may be set."""
    role_kit_id: Optional[int] = None
    job_target_id: Optional[str] = None
    interview_set_id: Optional[int] = None
    employer_job_id: Optional[str] = None

    @property
    def has_role_target(self) -> bool:
        return self.role_kit_id is not None or self.job_target_id is not None

    @property
    def is_empty(self) -> bool:
        return (
            not self.has_role_target
            and self.interview_set_id is None
            and self.employer_job_id is None
        )


@dataclass
class AccessDecision:
    allowed: bool
    channel: AccessChannel
    reason: str
    free_interviews_remaining: Optional[int] = None
    role_kit_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["channel"] = self.channel.value
        return data


@dataclass(frozen=True)
class ConsumeContext:
    """Details of the session being started, recorded on the usage event."""
    role_kit_id: Optional[int] = None
    interview_set_id: Optional[int] = None
    session_id: Optional[int] = None
    interview_type: Optional[str] = None


@dataclass
class EntitlementStatus:
    tier: str
    free_interviews_remaining: int
    is_subscriber: bool
    subscription_plan: Optional[str] = None
    subscription_expires_at: Optional[datetime] = None
    purchased_sets: List[Dict[str, Any]] = field(default_factory=list)
    shared_sets: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ShareLinkValidation:
    valid: bool
    reason: str
    share_link_id: Optional[int] = None
    interview_set_id: Optional[int] = None


@dataclass
class ResolutionContext:
    """Per-call state handed to each access rule."""
    user_id: int
    target: AccessTarget
    entitlement: Entitlement
    store: EntitlementStore
    settings: AccessSettings
    now: datetime
    _role_kit_resolved: bool = False
    _role_kit_id: Optional[int] = None

    @property
    def effective_role_kit_id(self) -> Optional[int]:
        """Explicit role kit, else the role kit of the job target's latest interview config."""
        if not self._role_kit_resolved:
            self._role_kit_id = self.target.role_kit_id
            if self._role_kit_id is None and self.target.job_target_id is not None:
                self._role_kit_id = self.store.resolve_role_kit_for_job(self.target.job_target_id)
            self._role_kit_resolved = True
        return self._role_kit_id


def _allow(channel: AccessChannel, reason: str, **extra) -> AccessDecision:
    return AccessDecision(allowed=True, channel=channel, reason=reason, **extra)


def _deny(reason: str, **extra) -> AccessDecision:
    return AccessDecision(allowed=False, channel=AccessChannel.NONE, reason=reason, **extra)


def employer_sponsorship_rule(ctx: ResolutionContext) -> Optional[AccessDecision]:
    target = ctx.target
    if target.employer_job_id is not None and ctx.store.get_sponsorship(ctx.user_id, target.employer_job_id):
        return _allow(AccessChannel.EMPLOYER_SPONSORED, REASON_EMPLOYER_SPONSORED)
    # Sponsored users browsing without a job or role target get the broad fallback
    if not target.has_role_target and ctx.store.get_sponsorship(ctx.user_id):
        return _allow(AccessChannel.EMPLOYER_SPONSORED, REASON_EMPLOYER_SPONSORED)
    return None


def pro_subscription_rule(ctx: ResolutionContext) -> Optional[AccessDecision]:
    if ctx.store.get_active_subscription(ctx.user_id, "pro", now=ctx.now):
        return _allow(AccessChannel.SUBSCRIPTION_PRO, REASON_PRO)
    return None


def role_pack_subscription_rule(ctx: ResolutionContext) -> Optional[AccessDecision]:
    role_kit_id = ctx.effective_role_kit_id
    if role_kit_id is None:
        return None
    if ctx.store.get_active_subscription(ctx.user_id, "role_pack", role_kit_id=role_kit_id, now=ctx.now):
        return _allow(AccessChannel.SUBSCRIPTION_ROLE_PACK, REASON_ROLE_PACK, role_kit_id=role_kit_id)
    return None


def interview_set_rule(ctx: ResolutionContext) -> Optional[AccessDecision]:
    set_id = ctx.target.interview_set_id
    if set_id is None:
        return None
    if ctx.store.get_purchase(ctx.user_id, set_id):
        return _allow(AccessChannel.PURCHASED_SET, REASON_PURCHASED)
    if ctx.store.has_shared_access_to_set(ctx.user_id, set_id, now=ctx.now):
        return _allow(AccessChannel.COMPANY_SHARED, REASON_COMPANY_SHARED)
    return None


def free_trial_rule(ctx: ResolutionContext) -> Optional[AccessDecision]:
    role_kit_id = ctx.effective_role_kit_id
    if role_kit_id is None:
        if ctx.target.is_empty:
            return None
        # Fixable by the caller, so it is reported rather than falling through
        return _deny(REASON_ROLE_REQUIRED, free_interviews_remaining=0)

    limit = ctx.settings.free_trial_limit
    session_count = ctx.store.count_prior_sessions(ctx.user_id, role_kit_id)
    ledger_remaining = ctx.entitlement.free_interviews_remaining
    if session_count >= limit or ledger_remaining <= 0:
        return _deny(REASON_TRIAL_EXHAUSTED, free_interviews_remaining=0, role_kit_id=role_kit_id)

    return _allow(
        AccessChannel.FREE_TRIAL,
        f"Free trial available ({session_count}/{limit} used)",
        free_interviews_remaining=min(limit - session_count, ledger_remaining) - 1,
        role_kit_id=role_kit_id,
    )


AccessRule = Callable[[ResolutionContext], Optional[AccessDecision]]

# Evaluated top to bottom; the first decision returned wins.
ACCESS_RULES: Tuple[Tuple[str, AccessRule], ...] = (
    ("employer_sponsorship", employer_sponsorship_rule),
    ("pro_subscription", pro_subscription_rule),
    ("role_pack_subscription", role_pack_subscription_rule),
    ("interview_set", interview_set_rule),
    ("free_trial", free_trial_rule),
)


def _require_user_id(user_id) -> None:
    if user_id is None or isinstance(user_id, bool):
        raise InvalidInputError("user_id is required")
    if isinstance(user_id, str) and not user_id.strip():
        raise InvalidInputError("user_id is required")


def _parse_channel(channel: Union[AccessChannel, str]) -> AccessChannel:
    try:
        return AccessChannel(channel)
    except ValueError:
        raise InvalidInputError(f"Unknown access channel: {channel}")


class EntitlementResolver:
    """
    Access decisions and consumption over an EntitlementStore.

    resolve() is read-only apart from lazily creating the user's ledger row.
    consume() is the only operation that spends a free interview.
    """

    def __init__(
        self,
        store: EntitlementStore,
        settings: Optional[AccessSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        rules: Tuple[Tuple[str, AccessRule], ...] = ACCESS_RULES,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock
        self.rules = rules

    def ensure_entitlement(self, user_id: int) -> Entitlement:
        entitlement = self.store.get_entitlement(user_id)
        if entitlement is None:
            entitlement = self.store.create_entitlement(user_id, self.settings.initial_free_interviews)
        return entitlement

    def resolve(self, user_id: int, target: Optional[AccessTarget] = None) -> AccessDecision:
        """
        Decide whether the user may start a session for the target.

        Denials are returned, not raised. Raises InvalidInputError for a
        missing user id and StorageUnavailableError if the store fails.
        """
        _require_user_id(user_id)
        target = target or AccessTarget()
        ctx = ResolutionContext(
            user_id=user_id,
            target=target,
            entitlement=self.ensure_entitlement(user_id),
            store=self.store,
            settings=self.settings,
            now=self.clock(),
        )

        for rule_name, rule in self.rules:
            decision = rule(ctx)
            if decision is not None:
                logger.info(
                    f"Access resolved: user_id={user_id}, rule={rule_name}, allowed={decision.allowed}, "
                    f"channel={decision.channel.value}, reason={decision.reason}"
                )
                return decision

        logger.info(f"Access denied: user_id={user_id}, no rule matched, target={target}")
        return _deny(REASON_NO_ACCESS)

    def consume(
        self,
        user_id: int,
        channel: Union[AccessChannel, str],
        context: Optional[ConsumeContext] = None,
    ) -> bool:
        """
        Record that a session started under a previously resolved channel.

        Free-trial consumption takes one unit from the ledger with a conditional
        decrement and returns False, recording nothing, when none is left or
        the role kit already has free_trial_limit recorded sessions. Every successful consumption appends a usage event.
        """
        _require_user_id(user_id)
        channel = _parse_channel(channel)
        if channel is AccessChannel.NONE:
            raise InvalidInputError("Cannot consume a session without an access channel")
        context = context or ConsumeContext()

        decremented = False
        if channel is AccessChannel.FREE_TRIAL:
            taken = self.store.decrement_free_trial(
                user_id,
                commit=False,
                role_kit_id=context.role_kit_id,
                session_limit=self.settings.free_trial_limit,
            )
            if not taken:
                logger.warning(
                    f"Free interview consumption lost: user_id={user_id}, role_kit_id={context.role_kit_id}"
                )
                return False
            decremented = True

        # Commits the decrement and the usage event together
        self.store.append_usage_event(
            user_id=user_id,
            access_channel=channel.value,
            role_kit_id=context.role_kit_id,
            interview_set_id=context.interview_set_id,
            session_id=context.session_id,
            interview_type=context.interview_type,
        )
        logger.info(
            f"Session consumed: user_id={user_id}, channel={channel.value}, "
            f"free_decremented={decremented}, role_kit_id={context.role_kit_id}"
        )
        return True

    def get_entitlement_status(self, user_id: int) -> EntitlementStatus:
        _require_user_id(user_id)
        entitlement = self.ensure_entitlement(user_id)
        subscription = self.store.get_latest_subscription(user_id, now=self.clock())
        purchased = [{"id": s.id, "name": s.name} for s in self.store.list_purchased_sets(user_id)]
        shared = [{"id": s.id, "name": s.name} for s in self.store.list_shared_sets(user_id)]

        if subscription:
            tier = "subscriber"
        elif purchased or shared:
            tier = "set_access"
        else:
            tier = "free"

        return EntitlementStatus(
            tier=tier,
            free_interviews_remaining=entitlement.free_interviews_remaining,
            is_subscriber=subscription is not None,
            subscription_plan=subscription.plan_type if subscription else None,
            subscription_expires_at=subscription.current_period_end if subscription else None,
            purchased_sets=purchased,
            shared_sets=shared,
        )

    def validate_share_token(self, share_token: str) -> ShareLinkValidation:
        link = self.store.get_share_link_by_token(share_token) if share_token else None
        return self._validate_share_link(link, self.clock())

    def _validate_share_link(
        self,
        link: Optional[CompanyShareLink],
        now: datetime,
        check_uses: bool = True,
    ) -> ShareLinkValidation:
        if link is None or not link.is_active:
            return ShareLinkValidation(valid=False, reason="Invalid or inactive share link")

        ids = {"share_link_id": link.id, "interview_set_id": link.interview_set_id}
        expires_at = as_naive_utc(link.expires_at)
        if expires_at is not None and expires_at <= now:
            return ShareLinkValidation(valid=False, reason="Share link has expired", **ids)
        if check_uses and link.max_uses is not None and link.current_uses >= link.max_uses:
            return ShareLinkValidation(valid=False, reason="Share link has reached maximum uses", **ids)
        return ShareLinkValidation(valid=True, reason="Share link is valid", **ids)

    def redeem_share_link(self, user_id: int, share_token: str) -> AccessDecision:
        """
        Grant the user access to the link's interview set.

        An existing grant is honored even after the link reaches max uses;
        only new grants are limited.
        """
        _require_user_id(user_id)
        if not share_token:
            raise InvalidInputError("share_token is required")
        now = self.clock()
        link = self.store.get_share_link_by_token(share_token)

        already_granted = link is not None and self.store.get_share_link_access(user_id, link.id)
        validation = self._validate_share_link(link, now, check_uses=not already_granted)
        if not validation.valid:
            logger.info(f"Share link redemption denied: user_id={user_id}, reason={validation.reason}")
            return _deny(validation.reason)

        if not already_granted and not self.store.grant_share_link_access(user_id, link.id, now=now):
            # Lost the last slot to a concurrent redemption, or the link changed underneath us
            return _deny("Share link has reached maximum uses")

        logger.info(
            f"Share link redeemed: user_id={user_id}, interview_set_id={link.interview_set_id}, "
            f"{sanitize_log_data({'share_token': share_token, 'regrant': bool(already_granted)})}"
        )
        return _allow(AccessChannel.COMPANY_SHARED, REASON_COMPANY_SHARED)

    def record_purchase(
        self,
        user_id: int,
        interview_set_id: int,
        payment_intent_id: str,
        amount_cents: int = 19900,
    ) -> Tuple[Purchase, bool]:
        """Idempotent on (user, set, payment intent). Returns (purchase, created)."""
        _require_user_id(user_id)
        if interview_set_id is None or not payment_intent_id:
            raise InvalidInputError("interview_set_id and payment_intent_id are required")
        if amount_cents < 0:
            raise InvalidInputError("amount_cents must be non-negative")

        purchase, created = self.store.record_purchase(user_id, interview_set_id, payment_intent_id, amount_cents)
        entitlement = self.ensure_entitlement(user_id)
        if entitlement.tier == "free":
            self.store.set_entitlement_tier(user_id, "set_access", entitlement.payment_subscription_id)

        if created:
            logger.info(f"Purchase recorded: user_id={user_id}, interview_set_id={interview_set_id}")
        else:
            logger.info(
                f"Duplicate purchase ignored: user_id={user_id}, interview_set_id={interview_set_id}, "
                f"payment_intent_id={payment_intent_id}"
            )
        return purchase, created

    def activate_subscription(
        self,
        user_id: int,
        plan_type: str,
        role_kit_id: Optional[int] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        stripe_subscription_id: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
    ) -> Subscription:
        """Insert a new active subscription row and mark the ledger as subscriber."""
        _require_user_id(user_id)
        if plan_type not in PLAN_TYPES:
            raise InvalidInputError(f"Invalid plan type: {plan_type}. Must be one of {PLAN_TYPES}")
        if plan_type == "role_pack" and role_kit_id is None:
            raise InvalidInputError("role_pack subscriptions require a role_kit_id")

        if stripe_subscription_id:
            existing = self.store.get_subscription_by_stripe_id(stripe_subscription_id)
            if existing is not None and existing.status == "active":
                return existing

        self.ensure_entitlement(user_id)
        subscription = self.store.create_subscription(
            user_id,
            plan_type,
            role_kit_id=role_kit_id,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=stripe_customer_id,
        )
        self.store.set_entitlement_tier(user_id, "subscriber", subscription.id)
        logger.info(f"Subscription activated: user_id={user_id}, plan={plan_type}, role_kit_id={role_kit_id}")
        return subscription

    def cancel_subscription(self, user_id: int, stripe_subscription_id: Optional[str] = None) -> int:
        """Cancel active subscriptions. Returns the number of rows canceled."""
        _require_user_id(user_id)
        canceled = self.store.cancel_subscriptions(user_id, stripe_subscription_id)
        if canceled == 0:
            return 0

        self.ensure_entitlement(user_id)
        remaining = self.store.get_latest_subscription(user_id, now=self.clock())
        if remaining is not None:
            self.store.set_entitlement_tier(user_id, "subscriber", remaining.id)
        elif self.store.list_purchased_sets(user_id) or self.store.list_shared_sets(user_id):
            self.store.set_entitlement_tier(user_id, "set_access")
        else:
            self.store.set_entitlement_tier(user_id, "free")
        logger.info(f"Subscription canceled: user_id={user_id}, rows={canceled}")
        return canceled
