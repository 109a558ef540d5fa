import uuid
from fastapi import APIRouter, Depends, Query, status
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.paging import PageParams, page_params
from app.core.schemas import PageOut
from app.core.security import Principal, require_roles
from app.modules.appointments.schemas import (
    AppointmentCreate, AppointmentStatusChange, AppointmentOut, AppointmentStatus, PaymentStatus,
)
from app.modules.appointments.service import AppointmentService
from app.modules.payments.router import payment_gateway, redirect_base
from app.modules.payments.schemas import PaymentSessionOut
from app.platform.ports.payment_gateway import PaymentGatewayPort

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session), gateway: PaymentGatewayPort = Depends(payment_gateway)) -> AppointmentService:
    return AppointmentService(session, gateway)

# ---- Booking ----

@router.post("/appointment", response_model=PaymentSessionOut, status_code=status.HTTP_201_CREATED)
async def book_and_pay(
    payload: AppointmentCreate,
    base_url: str = Depends(redirect_base),
    principal: Principal = Depends(require_roles("PATIENT")),
    service: AppointmentService = Depends(svc),
):
    return await service.create_appointment(principal, payload, mode="pay_now", base_url=base_url)

@router.post("/appointment/pay-later", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
async def book_pay_later(
    payload: AppointmentCreate,
    principal: Principal = Depends(require_roles("PATIENT")),
    service: AppointmentService = Depends(svc),
):
    return await service.create_appointment(principal, payload, mode="pay_later")

@router.post("/appointment/{appointment_id}/initiate-payment", response_model=PaymentSessionOut)
async def initiate_payment(
    appointment_id: uuid.UUID,
    base_url: str = Depends(redirect_base),
    principal: Principal = Depends(require_roles("PATIENT")),
    service: AppointmentService = Depends(svc),
):
    return await service.initiate_payment(principal, appointment_id, base_url)

# ---- Queries ----

@router.get("/appointment/my-appointment", response_model=PageOut[AppointmentOut])
async def my_appointments(
    status_: AppointmentStatus | None = Query(None, alias="status"),
    payment_status: PaymentStatus | None = Query(None, alias="paymentStatus"),
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(require_roles("PATIENT", "DOCTOR")),
    service: AppointmentService = Depends(svc),
):
    return await service.list_my_appointments(principal, status=status_, payment_status=payment_status, params=params)

@router.get("/appointment", response_model=PageOut[AppointmentOut])
async def list_appointments(
    patient_email: EmailStr | None = Query(None, alias="patientEmail"),
    doctor_email: EmailStr | None = Query(None, alias="doctorEmail"),
    status_: AppointmentStatus | None = Query(None, alias="status"),
    payment_status: PaymentStatus | None = Query(None, alias="paymentStatus"),
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(require_roles("ADMIN")),
    service: AppointmentService = Depends(svc),
):
    return await service.list_appointments(
        patient_email=patient_email, doctor_email=doctor_email, status=status_, payment_status=payment_status, params=params,
    )

# ---- Lifecycle ----

@router.patch("/appointment/status/{appointment_id}", response_model=AppointmentOut)
@router.patch("/appointment/{appointment_id}/status", response_model=AppointmentOut)
async def change_status(
    appointment_id: uuid.UUID,
    payload: AppointmentStatusChange,
    principal: Principal = Depends(require_roles("DOCTOR", "ADMIN")),
    service: AppointmentService = Depends(svc),
):
    return await service.change_status(principal, appointment_id, payload.status)
