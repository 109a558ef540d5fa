import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, func
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.base import utcnow
from app.core.paging import PageParams, order_clause
from app.modules.appointments.models import Appointment, SCHEDULED, CANCELED, COMPLETED
from app.modules.directory.models import Doctor, Patient
from app.modules.payments.models import PAID, UNPAID

SORTABLE = {"created_at", "updated_at", "status", "payment_status"}

def _with_relations(q):
    return q.options(
        selectinload(Appointment.patient),
        selectinload(Appointment.doctor),
        selectinload(Appointment.schedule),
        selectinload(Appointment.payment),
    )

class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, *, patient_id: uuid.UUID, doctor_id: uuid.UUID, schedule_id: uuid.UUID,
                     video_calling_id: str, payment_status: str = UNPAID) -> Appointment:
        obj = Appointment(
            patient_id=patient_id, doctor_id=doctor_id, schedule_id=schedule_id,
            video_calling_id=video_calling_id, status=SCHEDULED, payment_status=payment_status,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_full(self, appointment_id: uuid.UUID) -> Appointment | None:
        res = await self.session.execute(
            _with_relations(select(Appointment)).where(Appointment.id == appointment_id).execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    # ---- conditional transitions; each returns the number of rows it matched ----

    async def _transition(self, appointment_id: uuid.UUID, *conditions, **values) -> int:
        res = await self.session.execute(
            update(Appointment)
            .where(Appointment.id == appointment_id, *conditions)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def mark_paid_if_pending(self, appointment_id: uuid.UUID) -> int:
        return await self._transition(
            appointment_id, Appointment.status == SCHEDULED, Appointment.payment_status == UNPAID, payment_status=PAID,
        )

    async def cancel_if_scheduled(self, appointment_id: uuid.UUID) -> int:
        return await self._transition(appointment_id, Appointment.status == SCHEDULED, status=CANCELED)

    async def cancel_if_unpaid(self, appointment_id: uuid.UUID) -> int:
        return await self._transition(
            appointment_id, Appointment.status == SCHEDULED, Appointment.payment_status == UNPAID, status=CANCELED,
        )

    async def complete_if_paid(self, appointment_id: uuid.UUID) -> int:
        return await self._transition(
            appointment_id, Appointment.status == SCHEDULED, Appointment.payment_status == PAID, status=COMPLETED,
        )

    # ---- queries ----

    async def unpaid_before(self, cutoff: datetime) -> Sequence[tuple[uuid.UUID, uuid.UUID, uuid.UUID]]:
        res = await self.session.execute(
            select(Appointment.id, Appointment.doctor_id, Appointment.schedule_id)
            .where(
                Appointment.status == SCHEDULED,
                Appointment.payment_status == UNPAID,
                Appointment.created_at <= cutoff,
            )
            .order_by(Appointment.created_at.asc())
        )
        return [tuple(r) for r in res.all()]

    async def search(self, *, patient_id: uuid.UUID | None = None, doctor_id: uuid.UUID | None = None,
                     patient_email: str | None = None, doctor_email: str | None = None,
                     status: str | None = None, payment_status: str | None = None,
                     params: PageParams, default_order: str = "asc") -> tuple[Sequence[Appointment], int]:
        q = select(Appointment)
        if patient_id:
            q = q.where(Appointment.patient_id == patient_id)
        if doctor_id:
            q = q.where(Appointment.doctor_id == doctor_id)
        if patient_email:
            q = q.where(Appointment.patient_id.in_(select(Patient.id).where(Patient.email == patient_email)))
        if doctor_email:
            q = q.where(Appointment.doctor_id.in_(select(Doctor.id).where(Doctor.email == doctor_email)))
        if status:
            q = q.where(Appointment.status == status)
        if payment_status:
            q = q.where(Appointment.payment_status == payment_status)

        total = (await self.session.execute(select(func.count()).select_from(q.subquery()))).scalar_one()
        order = order_clause(Appointment, params, SORTABLE, default_order=default_order)
        res = await self.session.execute(_with_relations(q).order_by(order).offset(params.skip).limit(params.limit))
        return res.scalars().all(), total
