import uuid
from datetime import datetime
from typing import Literal
from app.core.schemas import ApiModel
from app.modules.payments.schemas import PaymentOut
from app.modules.schedules.schemas import ScheduleOut

AppointmentStatus = Literal["SCHEDULED", "COMPLETED", "CANCELED"]
PaymentStatus = Literal["UNPAID", "PAID"]

class AppointmentCreate(ApiModel):
    doctor_id: uuid.UUID
    schedule_id: uuid.UUID

class AppointmentStatusChange(ApiModel):
    status: AppointmentStatus

class PatientBrief(ApiModel):
    id: uuid.UUID
    name: str
    email: str
    contact_number: str | None = None

class DoctorBrief(ApiModel):
    id: uuid.UUID
    name: str
    email: str
    designation: str | None = None
    appointment_fee: int

class AppointmentOut(ApiModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    schedule_id: uuid.UUID
    video_calling_id: str
    status: AppointmentStatus
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime
    patient: PatientBrief | None = None
    doctor: DoctorBrief | None = None
    schedule: ScheduleOut | None = None
    payment: PaymentOut | None = None
