from __future__ import annotations
import asyncio
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from shadowai.config import Settings
from shadowai.core.auth import AuthContext
from shadowai.core.errors import CheckoutError, UpstreamError, ValidationError
from shadowai.db.gateway import PersistenceGateway
from shadowai.schemas.billing import SubscriptionStatus
from shadowai.services.subscriptions import SubscriptionResolver

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300
ACTIVE_STATUSES = {"active", "trialing"}
PAID_STATUSES = {"paid", "no_payment_required"}


def _datetime_from_unix(value: Any) -> Optional[datetime]:
    try:
        timestamp = int(value)
    except (TypeError, ValueError):
        return None
    if timestamp <= 0:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def verify_stripe_signature(payload: bytes, signature_header: str, secret: str, now: Optional[float] = None) -> bool:
    """Check a `Stripe-Signature` header (t=<ts>,v1=<hex hmac>[,v1=...]) against the webhook secret.

    Stripe sends one `v1` entry per active secret while a secret is rolled, so
    any matching entry is accepted. The HMAC covers the raw body bytes.
    """
    timestamp_text: Optional[str] = None
    signatures: List[str] = []
    for item in signature_header.split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        key, value = key.strip(), value.strip()
        if key == "t":
            timestamp_text = value
        elif key == "v1" and value:
            signatures.append(value)

    if not timestamp_text or not signatures:
        return False
    try:
        timestamp = int(timestamp_text)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(int(current) - timestamp) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, signature) for signature in signatures)


def _checkout_user_id(checkout_session: Dict[str, Any]) -> Optional[str]:
    metadata = checkout_session.get("metadata") or {}
    user_id = metadata.get("user_id") or checkout_session.get("client_reference_id")
    return str(user_id) if user_id else None


class CheckoutBridge:
    """Hosted checkout creation plus the subscription write path.

    `start_checkout` and `reconcile` are driven by the signed-in user. Provider
    webhooks (`apply_event`) are the only writers of the subscribers table.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        resolver: SubscriptionResolver,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.gateway = gateway
        self.resolver = resolver
        self.settings = settings
        self._transport = transport

    async def _stripe_request(
        self,
        method: str,
        path: str,
        *,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.settings.stripe_secret_key:
            raise CheckoutError("Billing is not configured on the server")

        url = f"{self.settings.stripe_api_base.rstrip('/')}{path}"
        try:
            async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    data=data,
                    params=params,
                    headers={"Authorization": f"Bearer {self.settings.stripe_secret_key}"},
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Billing provider unreachable: {e.__class__.__name__}") from e

        if response.status_code >= 400:
            message = "Billing request failed."
            try:
                payload = response.json()
                message = payload.get("error", {}).get("message") or payload.get("message") or message
            except ValueError:
                pass
            raise UpstreamError(message, upstream_status=response.status_code, upstream_message=message)

        try:
            payload = response.json()
        except ValueError as e:
            raise CheckoutError("Invalid response from billing provider") from e
        if not isinstance(payload, dict):
            raise CheckoutError("Invalid response shape from billing provider")
        return payload

    async def start_checkout(self, auth: Optional[AuthContext], plan_id: str) -> str:
        """Create a hosted payment page for `plan_id` and return its URL."""
        if auth is None or not auth.user_id:
            raise CheckoutError("You need to be signed in to upgrade")
        price_id = self.settings.stripe_prices.get(plan_id)
        if not price_id:
            raise CheckoutError(f"Unknown plan: {plan_id}")

        app_url = self.settings.public_app_url.rstrip("/")
        payload = {
            "mode": "subscription",
            "success_url": f"{app_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{app_url}/pricing",
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "client_reference_id": auth.user_id,
            "metadata[user_id]": auth.user_id,
            "metadata[plan]": plan_id,
        }
        if auth.email:
            payload["customer_email"] = auth.email

        try:
            data = await self._stripe_request("POST", "/v1/checkout/sessions", data=payload)
        except UpstreamError as e:
            logger.warning("Checkout creation failed user=%s status=%s: %s", auth.user_id, e.upstream_status, e.detail)
            raise CheckoutError("Failed to create checkout session. Please try again.") from e

        url = data.get("url")
        if not url:
            raise CheckoutError("Checkout URL not returned by billing provider")
        logger.info("Checkout session created user=%s plan=%s session=%s", auth.user_id, plan_id, data.get("id"))
        return url

    async def reconcile(self, auth: AuthContext, session_id: str) -> SubscriptionStatus:
        """Re-read subscription status after returning from the hosted page.

        Waits briefly so the provider's webhook has a chance to land first. If it
        has not, the previous status is returned and a later call picks it up.
        """
        if not (session_id or "").strip():
            raise ValidationError("session_id is required")
        delay = self.settings.reconcile_delay_seconds
        if delay > 0:
            await asyncio.sleep(delay)
        status = await self.resolver.status(auth.user_id)
        logger.info(
            "Reconciled subscription user=%s session=%s subscribed=%s", auth.user_id, session_id, status.subscribed
        )
        return status

    async def apply_event(self, event: Dict[str, Any]) -> bool:
        """Apply a verified billing webhook event. Returns True if a row changed."""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            return False

        if event_type == "checkout.session.completed":
            user_id = _checkout_user_id(obj)
            if not user_id or obj.get("mode") != "subscription":
                logger.warning("Ignoring checkout event id=%s without user mapping", event.get("id"))
                return False
            plan = (obj.get("metadata") or {}).get("plan") or "premium"
            customer = obj.get("customer") if isinstance(obj.get("customer"), str) else None
            await self.gateway.upsert_subscriber(
                user_id,
                subscribed=obj.get("payment_status") in PAID_STATUSES,
                subscription_tier=plan.capitalize(),
                stripe_customer_id=customer,
            )
            logger.info("Subscriber updated from checkout user=%s plan=%s", user_id, plan)
            return True

        if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            customer = obj.get("customer")
            if not isinstance(customer, str):
                return False
            row = await self.gateway.find_subscriber_by_customer(customer)
            if row is None:
                logger.warning("No subscriber for customer=%s (event %s)", customer, event_type)
                return False
            active = event_type != "customer.subscription.deleted" and obj.get("status") in ACTIVE_STATUSES
            await self.gateway.upsert_subscriber(
                row.user_id,
                subscribed=active,
                subscription_tier=row.subscription_tier if active else None,
                subscription_end=_datetime_from_unix(obj.get("current_period_end")),
                stripe_customer_id=customer,
            )
            logger.info("Subscriber updated user=%s active=%s", row.user_id, active)
            return True

        return False
