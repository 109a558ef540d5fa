import logging
from fastapi import APIRouter, Depends, Query, Request, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.db import get_session
from app.core.security import Principal, require_roles
from app.modules.payments.schemas import IpnAck, PaymentValidationOut, WebhookAck
from app.modules.payments.service import PaymentsService, frontend_base
from app.platform.ports.payment_gateway import PaymentGatewayPort, SignatureInvalid
from app.platform.provider_registry import registry

logger = logging.getLogger(__name__)

router = APIRouter()
# mounted at the application root; the gateway dashboard points at /webhook
webhook_router = APIRouter()

def payment_gateway() -> PaymentGatewayPort:
    return registry.payment_gateway()

def svc(session: AsyncSession = Depends(get_session), gateway: PaymentGatewayPort = Depends(payment_gateway)) -> PaymentsService:
    return PaymentsService(session, gateway)

def redirect_base(
    request: Request,
    x_frontend_origin: str | None = Header(None),
) -> str:
    return frontend_base(x_frontend_origin, request.headers.get("origin"), request.headers.get("referer"))

@router.get("/payment/ipn", response_model=IpnAck)
async def payment_ipn(
    transaction_id: str = Query(..., alias="transactionId"),
    status: str = Query(...),
    service: PaymentsService = Depends(svc),
):
    return await service.validate_ipn(transaction_id, status)

@router.get("/payment/stripe/validate", response_model=PaymentValidationOut)
async def validate_stripe_session(
    session_id: str = Query(..., min_length=1),
    principal: Principal = Depends(require_roles("PATIENT", "ADMIN")),
    service: PaymentsService = Depends(svc),
):
    return await service.validate_checkout_session(session_id, principal)

@webhook_router.post("/webhook", response_model=WebhookAck)
async def gateway_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    gateway: PaymentGatewayPort = Depends(payment_gateway),
    service: PaymentsService = Depends(svc),
):
    payload = await request.body()
    try:
        event = gateway.construct_event(payload, stripe_signature)
    except SignatureInvalid as e:
        logger.warning(f"Rejected webhook: {e}")
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    # past verification the gateway always gets a 200; failures are ours to chase
    try:
        outcome = await service.handle_gateway_event(event)
        logger.info(f"Webhook {event.id} ({event.type}) -> {outcome}")
    except Exception:
        logger.exception(f"Webhook {event.id} ({event.type}) could not be reconciled")
    return {"received": True}
