import uuid
import logging
from typing import Literal
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    AppointmentNotFound, DoctorNotFound, Forbidden, InvalidState, InvalidStatusTransition,
    PatientNotFound, SlotUnavailable,
)
from app.core.paging import PageParams, page_of
from app.core.security import Principal
from app.modules.appointments import notices
from app.modules.appointments.models import Appointment, SCHEDULED, COMPLETED, CANCELED
from app.modules.appointments.repository import AppointmentRepository
from app.modules.appointments.schemas import AppointmentCreate
from app.modules.directory.repository import DirectoryRepository
from app.modules.events.outbox import OutboxService
from app.modules.notifications.service import NotificationsService
from app.modules.payments.models import PAID, UNPAID
from app.modules.payments.repository import PaymentRepository
from app.modules.payments.service import PaymentsService, FREE_SNAPSHOT, MY_APPOINTMENTS_PATH
from app.modules.schedules.ledger import SlotLedger
from app.platform.ports.payment_gateway import PaymentGatewayPort

logger = logging.getLogger(__name__)

BookingMode = Literal["pay_now", "pay_later"]

VALID_NEXT = {
    SCHEDULED: {COMPLETED, CANCELED},
    COMPLETED: set(),
    CANCELED: set(),
}

def video_call_url() -> str:
    return f"{settings.VIDEO_CALL_BASE_URL.rstrip('/')}/{uuid.uuid4()}"

class AppointmentService:
    def __init__(self, session: AsyncSession, gateway: PaymentGatewayPort | None = None):
        self.session = session
        self.gateway = gateway
        self.appts = AppointmentRepository(session)
        self.payments = PaymentRepository(session)
        self.directory = DirectoryRepository(session)
        self.ledger = SlotLedger(session)
        self.notifications = NotificationsService(session)
        self.outbox = OutboxService(session)

    # ---- booking ----

    async def create_appointment(self, principal: Principal, payload: AppointmentCreate, *,
                                 mode: BookingMode = "pay_now", base_url: str | None = None) -> Appointment | dict:
        """
        Book a slot for the calling patient.

        ``pay_later`` returns the appointment. ``pay_now`` commits the booking
        first and then opens a checkout session; if the gateway fails the
        booking is rolled back by compensation so no slot stays held.
        """
        appt = await self._book(principal, payload)
        if mode == "pay_later":
            return appt

        base_url = base_url or settings.FRONTEND_URL.rstrip("/")
        if appt.payment_status == PAID:
            return {"payment_url": f"{base_url}{MY_APPOINTMENTS_PATH}"}
        try:
            checkout = await PaymentsService(self.session, self.gateway).open_checkout(appt, appt.payment, base_url)
        except Exception:
            await self._compensate(appt)
            raise
        return {"payment_url": checkout.url}

    async def _book(self, principal: Principal, payload: AppointmentCreate) -> Appointment:
        patient = await self.directory.patient_by_email(principal.email)
        if not patient:
            raise PatientNotFound()
        doctor = await self.directory.get_active_doctor(payload.doctor_id)
        if not doctor:
            raise DoctorNotFound()
        if not await self.ledger.is_free(doctor.id, payload.schedule_id):
            raise SlotUnavailable(doctor_id=str(doctor.id), schedule_id=str(payload.schedule_id))

        patient_id, doctor_id, schedule_id = patient.id, doctor.id, payload.schedule_id
        fee = doctor.appointment_fee or 0
        settled = PAID if fee <= 0 else UNPAID
        try:
            await self.ledger.try_claim(doctor_id, schedule_id)
            appt = await self.appts.create(
                patient_id=patient_id, doctor_id=doctor_id, schedule_id=schedule_id,
                video_calling_id=video_call_url(), payment_status=settled,
            )
            await self.payments.create(
                appointment_id=appt.id, amount=fee, status=settled,
                gateway_data={**FREE_SNAPSHOT, "amount": fee} if settled == PAID else None,
            )
            await self.ledger.attach(doctor_id, schedule_id, appt.id)
            full = await self.appts.get_full(appt.id)
            await self.notifications.emit_many(notices.booked(full))
            await self.outbox.enqueue("appointment.created", "appointment", appt.id, {
                "patient_id": str(patient_id),
                "doctor_id": str(doctor_id),
                "schedule_id": str(schedule_id),
                "amount": fee,
                "payment_status": settled,
            })
            await self.session.commit()
        except SlotUnavailable:
            await self.session.rollback()
            raise
        except IntegrityError:
            # live-slot index caught a booking the ledger did not
            await self.session.rollback()
            raise SlotUnavailable(doctor_id=str(doctor_id), schedule_id=str(schedule_id))
        logger.info(f"Appointment {full.id} booked: doctor={doctor_id} schedule={schedule_id} fee={fee} {settled}")
        return full

    async def _compensate(self, appt: Appointment) -> None:
        appointment_id, doctor_id, schedule_id = appt.id, appt.doctor_id, appt.schedule_id
        try:
            if await self.appts.cancel_if_unpaid(appointment_id):
                await self.payments.delete_for_appointment(appointment_id)
                await self.ledger.release(doctor_id, schedule_id)
                await self.outbox.enqueue("appointment.canceled", "appointment", appointment_id, {"reason": "checkout_failed"})
            await self.session.commit()
            logger.warning(f"Checkout failed; appointment {appointment_id} cancelled and slot released")
        except Exception:
            await self.session.rollback()
            logger.exception(f"Compensation for appointment {appointment_id} failed; the reclaimer will release it")

    async def initiate_payment(self, principal: Principal, appointment_id: uuid.UUID, base_url: str) -> dict:
        return await PaymentsService(self.session, self.gateway).initiate_payment(principal, appointment_id, base_url)

    # ---- lifecycle ----

    async def change_status(self, principal: Principal, appointment_id: uuid.UUID, new_status: str) -> Appointment:
        appt = await self.appts.get_full(appointment_id)
        if not appt:
            raise AppointmentNotFound()
        previous = appt.status
        owns = principal.role == "DOCTOR" and appt.doctor.email == principal.email
        if not (principal.is_admin or owns):
            raise Forbidden("Only the appointment's doctor or an admin can change its status")
        if new_status not in VALID_NEXT.get(appt.status, set()):
            raise InvalidStatusTransition(
                f"Cannot change status from {appt.status} to {new_status}", current=appt.status, requested=new_status,
            )
        if new_status == COMPLETED and appt.payment_status != PAID:
            raise InvalidState("Appointment must be paid before it can be completed")

        if new_status == CANCELED:
            matched = await self.appts.cancel_if_scheduled(appt.id)
            if matched:
                await self.ledger.release(appt.doctor_id, appt.schedule_id)
        else:
            matched = await self.appts.complete_if_paid(appt.id)
        if not matched:
            await self.session.rollback()
            raise InvalidStatusTransition("Appointment changed concurrently; reload and retry")

        fresh = await self.appts.get_full(appt.id)
        await self.notifications.emit_many(notices.status_changed(fresh, new_status))
        await self.outbox.enqueue("appointment.status_changed", "appointment", appt.id, {
            "from": previous,
            "to": new_status,
            "by": principal.role,
        })
        await self.session.commit()
        logger.info(f"Appointment {appt.id} -> {new_status} by {principal.role}")
        return fresh

    # ---- queries ----

    async def list_my_appointments(self, principal: Principal, *, status: str | None, payment_status: str | None, params: PageParams) -> dict:
        if principal.role == "PATIENT":
            patient = await self.directory.patient_by_email(principal.email)
            if not patient:
                raise PatientNotFound()
            rows, total = await self.appts.search(patient_id=patient.id, status=status, payment_status=payment_status, params=params)
        elif principal.role == "DOCTOR":
            doctor = await self.directory.doctor_by_email(principal.email)
            if not doctor:
                raise DoctorNotFound()
            rows, total = await self.appts.search(doctor_id=doctor.id, status=status, payment_status=payment_status, params=params)
        else:
            raise Forbidden("Only patients and doctors have their own appointments")
        return page_of(list(rows), total, params)

    async def list_appointments(self, *, patient_email: str | None, doctor_email: str | None, status: str | None,
                                payment_status: str | None, params: PageParams) -> dict:
        rows, total = await self.appts.search(
            patient_email=patient_email, doctor_email=doctor_email, status=status, payment_status=payment_status,
            params=params, default_order="desc",
        )
        return page_of(list(rows), total, params)
