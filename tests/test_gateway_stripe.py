import hashlib
import hmac
import json
import time
import pytest
import stripe
from app.core.config import settings
from app.platform.adapters.gateway_stripe import StripeGateway
from app.platform.ports.payment_gateway import GatewayError, SignatureInvalid

SECRET = "whsec_unit_test"


def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = timestamp or int(time.time())
    mac = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"

def event_payload(event_type: str = "checkout.session.completed") -> bytes:
    return json.dumps({
        "id": "evt_unit_1",
        "object": "event",
        "type": event_type,
        "data": {"object": {
            "id": "cs_unit_1",
            "object": "checkout.session",
            "payment_status": "paid",
            "url": None,
            "metadata": {"appointmentId": "a", "paymentId": "p"},
        }},
    }).encode()


def test_construct_event_verifies_signature_and_normalizes():
    gateway = StripeGateway(secret_key="sk_test_unit", webhook_secret=SECRET)
    payload = event_payload()
    event = gateway.construct_event(payload, sign(payload))

    assert event.id == "evt_unit_1"
    assert event.type == "checkout.session.completed"
    assert event.session.id == "cs_unit_1"
    assert event.session.payment_status == "paid"
    assert event.session.metadata == {"appointmentId": "a", "paymentId": "p"}
    assert event.session.raw["object"] == "checkout.session"


def test_construct_event_without_session_object():
    gateway = StripeGateway(secret_key="sk_test_unit", webhook_secret=SECRET)
    payload = json.dumps({"id": "evt_pi", "object": "event", "type": "payment_intent.payment_failed",
                          "data": {"object": {"id": "pi_1", "object": "payment_intent"}}}).encode()
    event = gateway.construct_event(payload, sign(payload))
    assert event.type == "payment_intent.payment_failed"
    assert event.session is None


@pytest.mark.parametrize("signature", [None, "", "t=1,v1=deadbeef"])
def test_construct_event_rejects_bad_signatures(signature):
    gateway = StripeGateway(secret_key="sk_test_unit", webhook_secret=SECRET)
    with pytest.raises(SignatureInvalid):
        gateway.construct_event(event_payload(), signature)


def test_construct_event_rejects_wrong_secret():
    gateway = StripeGateway(secret_key="sk_test_unit", webhook_secret=SECRET)
    payload = event_payload()
    with pytest.raises(SignatureInvalid):
        gateway.construct_event(payload, sign(payload, secret="whsec_other"))


async def test_create_checkout_session_sends_line_item(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return stripe.checkout.Session.construct_from({
            "id": "cs_created", "object": "checkout.session", "url": "https://checkout.stripe.com/c/pay/cs_created",
            "payment_status": "unpaid", "metadata": kwargs["metadata"],
        }, kwargs["api_key"])

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    gateway = StripeGateway(secret_key="sk_test_unit", webhook_secret=SECRET)
    session = await gateway.create_checkout_session(
        amount_minor=50000, currency="bdt", product_name="Appointment with Dr. Farhana Rahman",
        customer_email="arif@example.com", metadata={"appointmentId": "a", "paymentId": "p"},
        success_url="https://app/ok?session_id={CHECKOUT_SESSION_ID}", cancel_url="https://app/ok?payment=cancelled",
    )

    assert session.id == "cs_created"
    assert session.url == "https://checkout.stripe.com/c/pay/cs_created"
    assert captured["api_key"] == "sk_test_unit"
    assert captured["mode"] == "payment"
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 50000
    assert captured["line_items"][0]["price_data"]["currency"] == "bdt"
    assert captured["customer_email"] == "arif@example.com"


async def test_stripe_errors_become_gateway_errors(monkeypatch):
    def boom(*args, **kwargs):
        raise stripe.APIConnectionError("network unreachable")

    monkeypatch.setattr(stripe.checkout.Session, "create", boom)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", boom)
    gateway = StripeGateway(secret_key="sk_test_unit", webhook_secret=SECRET)
    with pytest.raises(GatewayError):
        await gateway.create_checkout_session(
            amount_minor=100, currency="bdt", product_name="x", customer_email="a@b.c",
            metadata={}, success_url="https://a", cancel_url="https://b",
        )
    with pytest.raises(GatewayError):
        await gateway.retrieve_checkout_session("cs_missing")


async def test_missing_secret_key_is_a_gateway_error(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    gateway = StripeGateway(secret_key=None, webhook_secret=SECRET)
    with pytest.raises(GatewayError):
        await gateway.retrieve_checkout_session("cs_any")
