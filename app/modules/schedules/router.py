import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.db import get_session
from app.core.paging import PageParams, page_params
from app.core.schemas import PageOut
from app.core.security import Principal, require_roles
from app.modules.schedules.schemas import (
    ScheduleCreate, ScheduleOut, DoctorScheduleCreate, DoctorScheduleAssigned, DoctorScheduleOut,
)
from app.modules.schedules.service import ScheduleService, DoctorScheduleService

router = APIRouter()

def schedule_svc(session: AsyncSession = Depends(get_session)) -> ScheduleService:
    return ScheduleService(session)

def doctor_schedule_svc(session: AsyncSession = Depends(get_session)) -> DoctorScheduleService:
    return DoctorScheduleService(session)

# ---- Schedules (global slots) ----

@router.post("/schedule", response_model=list[ScheduleOut], status_code=status.HTTP_201_CREATED)
async def create_schedules(
    payload: ScheduleCreate,
    principal: Principal = Depends(require_roles("ADMIN")),
    service: ScheduleService = Depends(schedule_svc),
):
    return await service.create_schedules(payload)

@router.get("/schedule", response_model=PageOut[ScheduleOut])
async def list_schedules_for_doctor(
    start_date_time: datetime | None = Query(None, alias="startDateTime"),
    end_date_time: datetime | None = Query(None, alias="endDateTime"),
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(require_roles("DOCTOR")),
    service: ScheduleService = Depends(schedule_svc),
):
    return await service.list_available_for_doctor(principal, start_from=start_date_time, end_until=end_date_time, params=params)

@router.delete("/schedule/{schedule_id}", response_model=ScheduleOut)
async def delete_schedule(
    schedule_id: uuid.UUID,
    principal: Principal = Depends(require_roles("ADMIN")),
    service: ScheduleService = Depends(schedule_svc),
):
    return await service.delete_schedule(schedule_id)

# ---- Doctor schedules (bookable slots) ----

@router.post("/doctor-schedule", response_model=DoctorScheduleAssigned, status_code=status.HTTP_201_CREATED)
async def assign_doctor_schedules(
    payload: DoctorScheduleCreate,
    principal: Principal = Depends(require_roles("DOCTOR", "ADMIN")),
    service: DoctorScheduleService = Depends(doctor_schedule_svc),
):
    return await service.assign(principal, payload)

@router.get("/doctor-schedule/my-schedule", response_model=PageOut[DoctorScheduleOut])
async def my_doctor_schedules(
    is_booked: bool | None = Query(None, alias="isBooked"),
    start_date_time: datetime | None = Query(None, alias="startDateTime"),
    end_date_time: datetime | None = Query(None, alias="endDateTime"),
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(require_roles("DOCTOR")),
    service: DoctorScheduleService = Depends(doctor_schedule_svc),
):
    return await service.list_for_doctor(principal, is_booked=is_booked, start_from=start_date_time, end_until=end_date_time, params=params)

@router.delete("/doctor-schedule/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_doctor_schedule(
    schedule_id: uuid.UUID,
    doctor_id: uuid.UUID | None = Query(None, alias="doctorId"),
    principal: Principal = Depends(require_roles("DOCTOR", "ADMIN")),
    service: DoctorScheduleService = Depends(doctor_schedule_svc),
):
    await service.unassign(principal, schedule_id, doctor_id)
