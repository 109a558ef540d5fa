import uuid
from datetime import date, time, datetime
from pydantic import Field
from app.core.schemas import ApiModel

class ScheduleCreate(ApiModel):
    start_date: date
    end_date: date
    start_time: time
    end_time: time

class ScheduleOut(ApiModel):
    id: uuid.UUID
    start_date_time: datetime
    end_date_time: datetime

class DoctorScheduleCreate(ApiModel):
    schedule_ids: list[uuid.UUID] = Field(..., min_length=1)
    # admins assign on behalf of a doctor; doctors always assign to themselves
    doctor_id: uuid.UUID | None = None

class DoctorScheduleAssigned(ApiModel):
    count: int

class DoctorScheduleOut(ApiModel):
    doctor_id: uuid.UUID
    schedule_id: uuid.UUID
    is_booked: bool
    appointment_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime
    schedule: ScheduleOut
