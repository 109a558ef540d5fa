from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

class GatewayError(Exception):
    """The payment gateway refused or failed a request."""

class SignatureInvalid(GatewayError):
    """A webhook payload did not carry a valid signature."""

@dataclass
class GatewaySession:
    id: str
    url: str | None
    payment_status: str | None
    metadata: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict)

@dataclass
class GatewayEvent:
    id: str
    type: str
    session: GatewaySession | None = None

@runtime_checkable
class PaymentGatewayPort(Protocol):
    async def create_checkout_session(
        self,
        *,
        amount_minor: int,
        currency: str,
        product_name: str,
        customer_email: str,
        metadata: dict,
        success_url: str,
        cancel_url: str,
    ) -> GatewaySession: ...

    async def retrieve_checkout_session(self, session_id: str) -> GatewaySession: ...

    def construct_event(self, payload: bytes, signature: str | None) -> GatewayEvent: ...
