import uuid
import logging
from urllib.parse import urlparse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.errors import (
    AppointmentCanceled, AppointmentNotFound, Forbidden, PaymentAlreadySettled, PaymentNotFound,
    UpstreamFailure, ValidationFailed,
)
from app.core.security import Principal
from app.modules.appointments import notices
from app.modules.appointments.models import Appointment, CANCELED
from app.modules.appointments.repository import AppointmentRepository
from app.modules.events.outbox import OutboxService
from app.modules.notifications.service import NotificationsService
from app.modules.payments.models import Payment, PAID, UNPAID
from app.modules.payments.repository import PaymentRepository
from app.platform.ports.payment_gateway import PaymentGatewayPort, GatewayError, GatewayEvent, GatewaySession

log = logging.getLogger(__name__)

MY_APPOINTMENTS_PATH = "/dashboard/my-appointments"

# results of applying a gateway outcome, besides the payment's own PAID / UNPAID
IGNORED = "IGNORED"
REJECTED = "REJECTED"

FREE_SNAPSHOT = {"provider": "free"}

def _origin_of(value: str | None) -> str | None:
    if not value:
        return None
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"

def frontend_base(*candidates: str | None) -> str:
    """First usable origin among the candidates, else the configured frontend."""
    for candidate in candidates:
        origin = _origin_of(candidate)
        if origin:
            return origin
    return settings.FRONTEND_URL.rstrip("/")

def _correlation(metadata: dict) -> tuple[uuid.UUID, uuid.UUID] | None:
    try:
        return uuid.UUID(str(metadata["appointmentId"])), uuid.UUID(str(metadata["paymentId"]))
    except (KeyError, ValueError):
        return None

def ipn_says_paid(status: str) -> bool:
    return status.strip().lower() in {"success", "paid"}


class PaymentsService:
    def __init__(self, session: AsyncSession, gateway: PaymentGatewayPort):
        self.session = session
        self.gateway = gateway
        self.payments = PaymentRepository(session)
        self.appts = AppointmentRepository(session)
        self.notifications = NotificationsService(session)
        self.outbox = OutboxService(session)

    # ---- session creation ----

    async def open_checkout(self, appt: Appointment, payment: Payment, base_url: str) -> GatewaySession:
        """Ask the gateway for a hosted checkout page. Must not run inside a claiming transaction."""
        page = f"{base_url}{MY_APPOINTMENTS_PATH}"
        try:
            session = await self.gateway.create_checkout_session(
                amount_minor=payment.amount * 100,
                currency=settings.PAYMENT_CURRENCY,
                product_name=f"Appointment with {appt.doctor.name}",
                customer_email=appt.patient.email,
                metadata={"appointmentId": str(appt.id), "paymentId": str(payment.id)},
                success_url=page + "?session_id={CHECKOUT_SESSION_ID}",
                cancel_url=page + "?payment=cancelled",
            )
        except GatewayError as e:
            raise UpstreamFailure(f"Could not start checkout: {e}") from e
        log.info(f"Checkout session {session.id} opened for appointment {appt.id}")
        return session

    async def initiate_payment(self, principal: Principal, appointment_id: uuid.UUID, base_url: str) -> dict:
        appt = await self.appts.get_full(appointment_id)
        if not appt or appt.patient.email != principal.email:
            raise AppointmentNotFound("Appointment not found or unauthorized")
        if appt.status == CANCELED:
            raise AppointmentCanceled()
        if appt.payment_status == PAID:
            raise PaymentAlreadySettled()
        payment = appt.payment
        if payment is None:
            raise PaymentNotFound("Payment record not found for this appointment")

        if payment.amount <= 0:
            await self.settle_free(appt)
            return {"payment_url": f"{base_url}{MY_APPOINTMENTS_PATH}", "transaction_id": payment.transaction_id}

        checkout = await self.open_checkout(appt, payment, base_url)
        return {"payment_url": checkout.url, "transaction_id": payment.transaction_id}

    async def settle_free(self, appt: Appointment) -> None:
        if not await self.appts.mark_paid_if_pending(appt.id):
            await self.session.rollback()
            raise AppointmentCanceled()
        await self.payments.settle(appt.payment.id, event_key=None, snapshot={**FREE_SNAPSHOT, "amount": appt.payment.amount})
        await self.session.commit()
        log.info(f"Zero-fee appointment {appt.id} marked paid without gateway")

    # ---- outcome reconciliation ----

    async def apply_outcome(self, *, appointment_id: uuid.UUID, payment_id: uuid.UUID, paid: bool, event_key: str, snapshot: dict) -> str:
        """
        Apply one gateway outcome exactly once.

        The appointment flips to PAID only while it is SCHEDULED and UNPAID; if the
        reclaimer cancelled it first the payment is left alone and an operator
        has to refund it. A PAID payment never goes back to UNPAID.
        Returns the payment status afterwards, or IGNORED / REJECTED.
        """
        if await self.payments.event_seen(event_key):
            log.info(f"Gateway outcome {event_key} already applied")
            payment = await self.payments.get(payment_id)
            return payment.status if payment else IGNORED

        payment = await self.payments.get(payment_id)
        if not payment or payment.appointment_id != appointment_id:
            if paid:
                log.error(
                    f"Gateway outcome {event_key} reports payment {payment_id} paid but it no longer exists "
                    f"for appointment {appointment_id}; manual refund required"
                )
                return REJECTED
            log.warning(f"Gateway outcome {event_key} refers to unknown payment {payment_id} / appointment {appointment_id}")
            return IGNORED
        if payment.status == PAID:
            return PAID

        try:
            if not paid:
                await self.payments.record_unpaid_outcome(payment_id, event_key=event_key, snapshot=snapshot)
                await self.session.commit()
                return UNPAID

            if not await self.appts.mark_paid_if_pending(appointment_id):
                await self.session.rollback()
                settled = await self.payments.get(payment_id)
                if settled and settled.status == PAID:
                    log.info(f"Payment {payment_id} already settled through another channel; {event_key} not applied")
                    return PAID
                log.error(
                    f"Payment {payment_id} confirmed by {event_key} but appointment {appointment_id} "
                    f"is no longer scheduled; manual refund required"
                )
                return REJECTED
            await self.payments.settle(payment_id, event_key=event_key, snapshot=snapshot)
            appt = await self.appts.get_full(appointment_id)
            await self.notifications.emit_many(notices.payment_confirmed(appt))
            await self.outbox.enqueue("appointment.paid", "appointment", appointment_id, {
                "payment_id": str(payment_id),
                "amount": payment.amount,
                "source": event_key.split(":", 1)[0] if ":" in event_key else "webhook",
            })
            await self.session.commit()
        except IntegrityError:
            # the same outcome was applied concurrently under this key
            await self.session.rollback()
            log.info(f"Gateway outcome {event_key} raced with a duplicate delivery")
            again = await self.payments.get(payment_id)
            return again.status if again else IGNORED
        log.info(f"Appointment {appointment_id} paid ({event_key})")
        return PAID

    async def handle_gateway_event(self, event: GatewayEvent) -> str:
        if event.type == "checkout.session.completed":
            session = event.session
            ids = _correlation(session.metadata) if session else None
            if not ids:
                log.warning(f"Gateway event {event.id} has no appointment metadata; ignoring")
                return IGNORED
            appointment_id, payment_id = ids
            return await self.apply_outcome(
                appointment_id=appointment_id,
                payment_id=payment_id,
                paid=session.payment_status == "paid",
                event_key=event.id,
                snapshot=session.raw,
            )
        if event.type in ("checkout.session.expired", "payment_intent.payment_failed"):
            # nothing to do; the reclaimer frees the slot once the grace window passes
            log.info(f"Gateway event {event.id} ({event.type}) noted")
            return UNPAID
        log.info(f"Unhandled gateway event type {event.type}")
        return IGNORED

    async def validate_ipn(self, transaction_id: str, status: str) -> dict:
        payment = await self.payments.by_transaction_id(transaction_id)
        if not payment:
            log.warning(f"IPN for unknown transaction {transaction_id}")
            return {"status": IGNORED}
        result = await self.apply_outcome(
            appointment_id=payment.appointment_id,
            payment_id=payment.id,
            paid=ipn_says_paid(status),
            event_key=f"ipn:{transaction_id}:{status}",
            snapshot={"provider": "ipn", "transactionId": transaction_id, "status": status},
        )
        return {"status": result}

    async def validate_checkout_session(self, session_id: str, principal: Principal) -> dict:
        try:
            checkout = await self.gateway.retrieve_checkout_session(session_id)
        except GatewayError as e:
            raise UpstreamFailure(f"Could not retrieve checkout session: {e}") from e
        ids = _correlation(checkout.metadata)
        if not ids:
            raise ValidationFailed("Checkout session carries no appointment metadata")
        appointment_id, payment_id = ids

        appt = await self.appts.get_full(appointment_id)
        if not appt:
            raise AppointmentNotFound()
        if not principal.is_admin and appt.patient.email != principal.email:
            raise Forbidden("This appointment belongs to another patient")

        result = await self.apply_outcome(
            appointment_id=appointment_id,
            payment_id=payment_id,
            paid=checkout.payment_status == "paid",
            event_key=f"session:{checkout.id}",
            snapshot=checkout.raw,
        )
        return {"appointment_id": appointment_id, "payment_id": payment_id, "status": result}
