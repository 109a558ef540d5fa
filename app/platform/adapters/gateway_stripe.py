import asyncio
import json
import logging
import stripe
from app.core.config import settings
from app.platform.ports.payment_gateway import (
    PaymentGatewayPort, GatewaySession, GatewayEvent, GatewayError, SignatureInvalid,
)

log = logging.getLogger("gateway.stripe")

def _plain(obj) -> dict:
    # StripeObject renders itself as JSON; go through that to get plain dicts
    return json.loads(str(obj))

def _session_from(data: dict) -> GatewaySession:
    return GatewaySession(
        id=data["id"],
        url=data.get("url"),
        payment_status=data.get("payment_status"),
        metadata=dict(data.get("metadata") or {}),
        raw=data,
    )

class StripeGateway(PaymentGatewayPort):
    def __init__(self, secret_key: str | None = None, webhook_secret: str | None = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def _require_key(self) -> str:
        if not self.secret_key:
            raise GatewayError("STRIPE_SECRET_KEY not configured")
        return self.secret_key

    async def create_checkout_session(self, *, amount_minor: int, currency: str, product_name: str, customer_email: str,
                                      metadata: dict, success_url: str, cancel_url: str) -> GatewaySession:
        key = self._require_key()
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=key,
                mode="payment",
                payment_method_types=["card"],
                customer_email=customer_email,
                line_items=[{
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": product_name},
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }],
                metadata=metadata,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            log.error(f"Stripe checkout session creation failed: {e}")
            raise GatewayError(str(e)) from e
        log.info(f"Stripe checkout session {session.id} created")
        return _session_from(_plain(session))

    async def retrieve_checkout_session(self, session_id: str) -> GatewaySession:
        key = self._require_key()
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id, api_key=key)
        except stripe.StripeError as e:
            log.error(f"Stripe checkout session {session_id} lookup failed: {e}")
            raise GatewayError(str(e)) from e
        return _session_from(_plain(session))

    def construct_event(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if not self.webhook_secret:
            raise SignatureInvalid("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise SignatureInvalid("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise SignatureInvalid(str(e)) from e

        data = _plain(event)
        obj = (data.get("data") or {}).get("object") or {}
        session = _session_from(obj) if obj.get("object") == "checkout.session" else None
        return GatewayEvent(id=data["id"], type=data["type"], session=session)
