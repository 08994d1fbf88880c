import json
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from shadowai.api.deps import get_checkout_bridge, get_resolver
from shadowai.config import Settings, get_settings
from shadowai.core.auth import AuthContext, get_auth_context
from shadowai.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    ReconcileRequest,
    SubscriptionStatus,
)
from shadowai.services.checkout import CheckoutBridge, verify_stripe_signature
from shadowai.services.subscriptions import SubscriptionResolver

router = APIRouter(prefix="/billing")
logger = logging.getLogger(__name__)


@router.get("/subscription", response_model=SubscriptionStatus)
async def get_subscription(
    auth: AuthContext = Depends(get_auth_context),
    resolver: SubscriptionResolver = Depends(get_resolver),
) -> SubscriptionStatus:
    """Current billing status of the caller."""
    return await resolver.status(auth.user_id)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    auth: AuthContext = Depends(get_auth_context),
    bridge: CheckoutBridge = Depends(get_checkout_bridge),
) -> CheckoutResponse:
    """Create a hosted checkout page for the requested plan."""
    url = await bridge.start_checkout(auth, request.planId)
    return CheckoutResponse(url=url)


@router.post("/reconcile", response_model=SubscriptionStatus)
async def reconcile(
    request: ReconcileRequest,
    auth: AuthContext = Depends(get_auth_context),
    bridge: CheckoutBridge = Depends(get_checkout_bridge),
) -> SubscriptionStatus:
    """Refresh subscription status after returning from checkout (`session_id`)."""
    return await bridge.reconcile(auth, request.sessionId)


@router.post("/webhook")
async def billing_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    settings: Settings = Depends(get_settings),
    bridge: CheckoutBridge = Depends(get_checkout_bridge),
) -> Dict[str, bool]:
    """Billing provider events; the only path that writes subscription status."""
    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=400, detail="Missing webhook payload.")

    secret = settings.stripe_webhook_secret
    if not secret:
        raise HTTPException(status_code=503, detail="Webhook secret is not configured.")
    if not stripe_signature or not verify_stripe_signature(payload, stripe_signature, secret):
        raise HTTPException(status_code=400, detail="Invalid Stripe signature.")

    try:
        event = json.loads(payload.decode("utf-8"))
    except ValueError as error:
        raise HTTPException(status_code=400, detail="Invalid webhook payload.") from error
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload shape.")

    processed = await bridge.apply_event(event)
    logger.info("Webhook %s id=%s processed=%s", event.get("type"), event.get("id"), processed)
    return {"received": True, "processed": processed}
