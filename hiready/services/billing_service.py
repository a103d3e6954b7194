"""
Stripe webhook event handlers.

Each handler maps one Stripe event onto the entitlement resolver. Stripe
redelivers events, so every handler is safe to run more than once.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from hiready.core.errors import InvalidInputError
from hiready.db.models.interview_set import Purchase
from hiready.db.models.subscription import Subscription
from hiready.services.entitlement_service import EntitlementResolver

logger = logging.getLogger(__name__)


def _metadata_int(metadata: Dict, key: str, required: bool = True) -> Optional[int]:
    value = metadata.get(key)
    if value in (None, ""):
        if required:
            raise InvalidInputError(f"Missing {key} in event metadata")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid {key} in event metadata: {value!r}")


def _from_timestamp(timestamp: Optional[int]) -> Optional[datetime]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


def handle_payment_intent_succeeded(event_data: Dict, resolver: EntitlementResolver) -> Purchase:
    """
    Handle payment_intent.succeeded for an interview-set purchase.

    The payment intent metadata carries user_id and interview_set_id.
    """
    intent = event_data.get("object", {})
    metadata = intent.get("metadata") or {}
    user_id = _metadata_int(metadata, "user_id")
    interview_set_id = _metadata_int(metadata, "interview_set_id")

    purchase, created = resolver.record_purchase(
        user_id,
        interview_set_id,
        intent.get("id"),
        amount_cents=intent.get("amount_received") or intent.get("amount") or 0,
    )
    logger.info(
        f"Payment intent handled: user_id={user_id}, interview_set_id={interview_set_id}, created={created}"
    )
    return purchase


def handle_subscription_created(event_data: Dict, resolver: EntitlementResolver) -> Subscription:
    """
    Handle customer.subscription.created.

    Subscription metadata carries user_id, plan_type (pro | role_pack) and,
    for role packs, role_kit_id.
    """
    subscription_data = event_data.get("object", {})
    metadata = subscription_data.get("metadata") or {}
    user_id = _metadata_int(metadata, "user_id")
    role_kit_id = _metadata_int(metadata, "role_kit_id", required=False)
    plan_type = metadata.get("plan_type") or ("role_pack" if role_kit_id is not None else "pro")

    subscription = resolver.activate_subscription(
        user_id,
        plan_type,
        role_kit_id=role_kit_id,
        current_period_start=_from_timestamp(subscription_data.get("current_period_start")),
        current_period_end=_from_timestamp(subscription_data.get("current_period_end")),
        stripe_subscription_id=subscription_data.get("id"),
        stripe_customer_id=subscription_data.get("customer"),
    )
    logger.info(
        f"Subscription created: user_id={user_id}, plan={plan_type}, subscription_id={subscription_data.get('id')}"
    )
    return subscription


def handle_subscription_deleted(event_data: Dict, resolver: EntitlementResolver) -> int:
    """Handle customer.subscription.deleted. Returns the number of rows canceled."""
    subscription_data = event_data.get("object", {})
    subscription_id = subscription_data.get("id")
    if not subscription_id:
        raise InvalidInputError("Subscription event has no id")

    subscription = resolver.store.get_subscription_by_stripe_id(subscription_id)
    if subscription is None:
        logger.warning(f"customer.subscription.deleted: Subscription not found for subscription_id={subscription_id}")
        return 0

    canceled = resolver.cancel_subscription(subscription.user_id, stripe_subscription_id=subscription_id)
    logger.info(f"Subscription deleted: user_id={subscription.user_id}, subscription_id={subscription_id}")
    return canceled


EVENT_HANDLERS = {
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.deleted": handle_subscription_deleted,
}
