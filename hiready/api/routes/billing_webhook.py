import logging
import stripe
from fastapi import APIRouter, Depends, Request, Header, HTTPException, status
from hiready.core.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from hiready.core.access_guard import get_resolver
from hiready.core.logging_config import sanitize_log_data
from hiready.services.billing_service import EVENT_HANDLERS
from hiready.services.entitlement_service import EntitlementResolver

logger = logging.getLogger(__name__)

stripe.api_key = STRIPE_SECRET_KEY

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    resolver: EntitlementResolver = Depends(get_resolver),
):
    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=stripe_signature,
            secret=STRIPE_WEBHOOK_SECRET,
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook verification failed"
        )

    event_type = event["type"]
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug(f"Ignoring webhook event: type={event_type}")
        return {"status": "ignored", "type": event_type}

    payload = event["data"].get("object") or {}
    summary = {
        "type": event_type,
        "id": event.get("id"),
        "customer": payload.get("customer"),
        "metadata": payload.get("metadata"),
    }
    logger.info(f"Webhook event received: {sanitize_log_data(summary)}")
    handler(event["data"], resolver)

    return {"status": "success", "type": event_type}
