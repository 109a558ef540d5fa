import uuid
import asyncio
import pytest
from sqlalchemy import select, func
from app.core.errors import (
    AppointmentCanceled, AppointmentNotFound, Forbidden, PaymentAlreadySettled, UpstreamFailure, ValidationFailed,
)
from app.modules.appointments.models import Appointment, SCHEDULED, CANCELED
from app.modules.appointments.repository import AppointmentRepository
from app.modules.appointments.schemas import AppointmentCreate
from app.modules.appointments.service import AppointmentService
from app.modules.events.outbox import EventOutbox
from app.modules.notifications.models import Notification, PAYMENT_CONFIRMED
from app.modules.payments.models import PAID, UNPAID
from app.modules.payments.service import PaymentsService, IGNORED, frontend_base, ipn_says_paid
from app.platform.ports.payment_gateway import GatewayEvent, GatewaySession

from conftest import principal

BASE = "https://app.nexusclinic.com"


async def load(session_factory, appointment_id) -> Appointment:
    async with session_factory() as s:
        return await AppointmentRepository(s).get_full(appointment_id)

async def book_now(session_factory, gateway, who, doctor_id, schedule_id):
    """Pay-now booking; returns (appointment, checkout session)."""
    async with session_factory() as s:
        await AppointmentService(s, gateway).create_appointment(
            who, AppointmentCreate(doctor_id=doctor_id, schedule_id=schedule_id), base_url=BASE)
    session = list(gateway.sessions.values())[-1]
    appt = await load(session_factory, uuid.UUID(session.metadata["appointmentId"]))
    return appt, session

def completed(session, event_id="evt_1") -> GatewayEvent:
    return GatewayEvent(id=event_id, type="checkout.session.completed", session=session)


async def test_the_500_fee_scenario(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    assert appt.payment.amount == 500
    assert gateway.requests[0]["amount_minor"] == 50000

    gateway.mark_paid(checkout.id)
    async with session_factory() as s:
        outcome = await PaymentsService(s, gateway).handle_gateway_event(completed(checkout))
    assert outcome == PAID

    paid = await load(session_factory, appt.id)
    assert paid.status == SCHEDULED
    assert paid.payment_status == PAID
    assert paid.payment.status == PAID
    assert paid.payment.gateway_event_id == "evt_1"
    assert paid.payment.payment_gateway_data["payment_status"] == "paid"


async def test_repeated_event_is_applied_once(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    gateway.mark_paid(checkout.id)
    for _ in range(3):
        async with session_factory() as s:
            assert await PaymentsService(s, gateway).handle_gateway_event(completed(checkout)) == PAID

    async with session_factory() as s:
        confirmations = (await s.execute(
            select(func.count()).select_from(Notification).where(Notification.type == PAYMENT_CONFIRMED)
        )).scalar_one()
    assert confirmations == 2  # patient + doctor, once


async def test_unpaid_outcome_never_reverts_paid(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    gateway.mark_paid(checkout.id)
    async with session_factory() as s:
        await PaymentsService(s, gateway).handle_gateway_event(completed(checkout, "evt_paid"))

    checkout.payment_status = "unpaid"
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).handle_gateway_event(completed(checkout, "evt_late_unpaid")) == PAID
    assert (await load(session_factory, appt.id)).payment.status == PAID


async def test_unpaid_completion_is_recorded_but_not_settled(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).handle_gateway_event(completed(checkout, "evt_async")) == UNPAID
    again = await load(session_factory, appt.id)
    assert again.payment_status == UNPAID
    assert again.payment.gateway_event_id == "evt_async"


async def test_events_without_metadata_or_of_other_types_are_ignored(session_factory, clinic, gateway):
    bare = GatewaySession(id="cs_orphan", url=None, payment_status="paid", metadata={}, raw={})
    async with session_factory() as s:
        service = PaymentsService(s, gateway)
        assert await service.handle_gateway_event(completed(bare)) == IGNORED
        assert await service.handle_gateway_event(GatewayEvent(id="evt_x", type="customer.created")) == IGNORED
        assert await service.handle_gateway_event(GatewayEvent(id="evt_y", type="checkout.session.expired")) == UNPAID


async def test_ipn_success_marks_paid_once(session_factory, clinic, patient_principal, gateway):
    appt, _ = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    tx = appt.payment.transaction_id
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).validate_ipn(tx, "SUCCESS") == {"status": PAID}
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).validate_ipn(tx, "SUCCESS") == {"status": PAID}

    paid = await load(session_factory, appt.id)
    assert paid.payment_status == PAID
    assert paid.payment.gateway_event_id == f"ipn:{tx}:SUCCESS"


async def test_ipn_for_unknown_transaction_is_ignored(session_factory, gateway):
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).validate_ipn("no-such-tx", "success") == {"status": IGNORED}


async def test_ipn_failure_status_leaves_payment_unpaid(session_factory, clinic, patient_principal, gateway):
    appt, _ = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).validate_ipn(appt.payment.transaction_id, "FAILED") == {"status": UNPAID}
    assert (await load(session_factory, appt.id)).payment_status == UNPAID


async def test_validate_checkout_session(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    gateway.mark_paid(checkout.id)
    async with session_factory() as s:
        result = await PaymentsService(s, gateway).validate_checkout_session(checkout.id, patient_principal)
    assert result == {"appointment_id": appt.id, "payment_id": appt.payment.id, "status": PAID}
    assert (await load(session_factory, appt.id)).payment.gateway_event_id == f"session:{checkout.id}"


async def side_effects(session_factory) -> tuple[int, int]:
    async with session_factory() as s:
        confirmations = (await s.execute(
            select(func.count()).select_from(Notification).where(Notification.type == PAYMENT_CONFIRMED)
        )).scalar_one()
        paid_events = (await s.execute(
            select(func.count()).select_from(EventOutbox).where(EventOutbox.event_type == "appointment.paid")
        )).scalar_one()
    return confirmations, paid_events


async def test_webhook_then_polling_settles_once(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    gateway.mark_paid(checkout.id)
    async with session_factory() as s:
        assert await PaymentsService(s, gateway).handle_gateway_event(completed(checkout)) == PAID
    async with session_factory() as s:
        result = await PaymentsService(s, gateway).validate_checkout_session(checkout.id, patient_principal)
    assert result["status"] == PAID

    assert await side_effects(session_factory) == (2, 1)
    assert (await load(session_factory, appt.id)).payment.gateway_event_id == "evt_1"


async def test_webhook_and_polling_racing_settle_once(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    gateway.mark_paid(checkout.id)

    async def webhook():
        async with session_factory() as s:
            return await PaymentsService(s, gateway).handle_gateway_event(completed(checkout, "evt_race"))

    async def poll():
        async with session_factory() as s:
            return (await PaymentsService(s, gateway).validate_checkout_session(checkout.id, patient_principal))["status"]

    assert await asyncio.gather(webhook(), poll()) == [PAID, PAID]
    assert await side_effects(session_factory) == (2, 1)
    paid = await load(session_factory, appt.id)
    assert paid.payment_status == PAID
    assert paid.payment.gateway_event_id in {"evt_race", f"session:{checkout.id}"}


async def test_validate_checkout_session_guards(session_factory, clinic, patient_principal, gateway):
    appt, checkout = await book_now(session_factory, gateway, patient_principal, clinic.doctor.id, clinic.schedule.id)
    stranger = principal("PATIENT", clinic.other_patient.email)
    async with session_factory() as s:
        with pytest.raises(Forbidden):
            await PaymentsService(s, gateway).validate_checkout_session(checkout.id, stranger)

    checkout.metadata = {}
    async with session_factory() as s:
        with pytest.raises(ValidationFailed):
            await PaymentsService(s, gateway).validate_checkout_session(checkout.id, patient_principal)

    async with session_factory() as s:
        with pytest.raises(UpstreamFailure):
            await PaymentsService(s, gateway).validate_checkout_session("cs_missing", patient_principal)


async def test_initiate_payment_for_pay_later_booking(session_factory, clinic, patient_principal, gateway):
    async with session_factory() as s:
        appt = await AppointmentService(s).create_appointment(
            patient_principal, AppointmentCreate(doctor_id=clinic.doctor.id, schedule_id=clinic.schedule.id), mode="pay_later")

    async with session_factory() as s:
        result = await PaymentsService(s, gateway).initiate_payment(patient_principal, appt.id, BASE)
    assert result["transaction_id"] == appt.payment.transaction_id
    assert result["payment_url"].startswith("https://checkout.test/pay/")
    assert gateway.requests[0]["metadata"] == {"appointmentId": str(appt.id), "paymentId": str(appt.payment.id)}


async def test_initiate_payment_guards(session_factory, clinic, patient_principal, admin_principal, gateway):
    async with session_factory() as s:
        appt = await AppointmentService(s).create_appointment(
            patient_principal, AppointmentCreate(doctor_id=clinic.doctor.id, schedule_id=clinic.schedule.id), mode="pay_later")
        free = await AppointmentService(s).create_appointment(
            patient_principal, AppointmentCreate(doctor_id=clinic.free_doctor.id, schedule_id=clinic.free_schedule.id), mode="pay_later")

    stranger = principal("PATIENT", clinic.other_patient.email)
    async with session_factory() as s:
        with pytest.raises(AppointmentNotFound):
            await PaymentsService(s, gateway).initiate_payment(stranger, appt.id, BASE)

    async with session_factory() as s:
        with pytest.raises(PaymentAlreadySettled):
            await PaymentsService(s, gateway).initiate_payment(patient_principal, free.id, BASE)

    async with session_factory() as s:
        await AppointmentService(s).change_status(admin_principal, appt.id, CANCELED)
    async with session_factory() as s:
        with pytest.raises(AppointmentCanceled):
            await PaymentsService(s, gateway).initiate_payment(patient_principal, appt.id, BASE)
    assert gateway.requests == []


def test_frontend_base_prefers_explicit_origin():
    assert frontend_base("https://app.nexusclinic.com/", None, None) == "https://app.nexusclinic.com"
    assert frontend_base(None, "http://localhost:3001", None) == "http://localhost:3001"
    assert frontend_base(None, None, "https://portal.nexusclinic.com/dashboard?x=1") == "https://portal.nexusclinic.com"
    assert frontend_base("not a url", "", None) == "http://localhost:3000"


def test_ipn_status_parsing():
    assert ipn_says_paid("success")
    assert ipn_says_paid(" PAID ")
    assert not ipn_says_paid("FAILED")
