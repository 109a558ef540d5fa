from app.modules.appointments.models import Appointment, CANCELED
from app.modules.notifications import models as kinds
from app.modules.notifications.schemas import NotificationDraft

PATIENT_LINK = "/dashboard/my-appointments"
DOCTOR_LINK = "/doctor/dashboard/appointments"

def _when(appt: Appointment) -> str:
    return appt.schedule.start_date_time.strftime("%Y-%m-%d %H:%M")

def _pair(appt: Appointment, kind: str, title: str, to_patient: str, to_doctor: str) -> list[NotificationDraft]:
    return [
        NotificationDraft(appt.patient.email, "PATIENT", kind, title, to_patient, PATIENT_LINK, appt.id),
        NotificationDraft(appt.doctor.email, "DOCTOR", kind, title, to_doctor, DOCTOR_LINK, appt.id),
    ]

def booked(appt: Appointment) -> list[NotificationDraft]:
    when = _when(appt)
    return _pair(
        appt, kinds.APPOINTMENT_CREATED, "Appointment booked",
        f"Your appointment with {appt.doctor.name} on {when} is booked.",
        f"{appt.patient.name} booked an appointment with you on {when}.",
    )

def status_changed(appt: Appointment, new_status: str) -> list[NotificationDraft]:
    kind = kinds.APPOINTMENT_CANCELED if new_status == CANCELED else kinds.APPOINTMENT_STATUS_UPDATED
    msg = f"Appointment on {_when(appt)} is now {new_status}."
    return _pair(appt, kind, "Appointment status updated", msg, msg)

def reclaimed(appt: Appointment) -> list[NotificationDraft]:
    when = _when(appt)
    return _pair(
        appt, kinds.APPOINTMENT_CANCELED, "Appointment cancelled",
        f"Your appointment on {when} was cancelled because payment was not completed in time.",
        f"The unpaid appointment with {appt.patient.name} on {when} was cancelled and the slot is free again.",
    )

def payment_confirmed(appt: Appointment) -> list[NotificationDraft]:
    when = _when(appt)
    return _pair(
        appt, kinds.PAYMENT_CONFIRMED, "Payment confirmed",
        f"Payment received for your appointment with {appt.doctor.name} on {when}.",
        f"{appt.patient.name} paid for the appointment on {when}.",
    )
