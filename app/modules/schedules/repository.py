import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, func, delete
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.paging import PageParams, order_clause
from app.modules.schedules.models import Schedule, DoctorSchedule

class ScheduleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, start: datetime, end: datetime) -> Schedule:
        obj = Schedule(start_date_time=start, end_date_time=end)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, schedule_id: uuid.UUID) -> Schedule | None:
        res = await self.session.execute(select(Schedule).where(Schedule.id == schedule_id))
        return res.scalar_one_or_none()

    async def find_exact(self, start: datetime, end: datetime) -> Schedule | None:
        res = await self.session.execute(
            select(Schedule).where(Schedule.start_date_time == start, Schedule.end_date_time == end)
        )
        return res.scalars().first()

    async def existing_ids(self, ids: Sequence[uuid.UUID]) -> set[uuid.UUID]:
        res = await self.session.execute(select(Schedule.id).where(Schedule.id.in_(ids)))
        return set(res.scalars().all())

    async def is_assigned(self, schedule_id: uuid.UUID) -> bool:
        res = await self.session.execute(
            select(func.count()).select_from(DoctorSchedule).where(DoctorSchedule.schedule_id == schedule_id)
        )
        return res.scalar_one() > 0

    async def delete(self, schedule_id: uuid.UUID) -> int:
        res = await self.session.execute(delete(Schedule).where(Schedule.id == schedule_id))
        return res.rowcount

    async def list_unassigned(self, doctor_id: uuid.UUID, *, start_from: datetime | None, end_until: datetime | None, params: PageParams) -> tuple[Sequence[Schedule], int]:
        taken = select(DoctorSchedule.schedule_id).where(DoctorSchedule.doctor_id == doctor_id)
        cond = [Schedule.id.not_in(taken)]
        if start_from:
            cond.append(Schedule.start_date_time >= start_from)
        if end_until:
            cond.append(Schedule.end_date_time <= end_until)
        q = (
            select(Schedule).where(*cond)
            .order_by(order_clause(Schedule, params, {"created_at", "start_date_time", "end_date_time"}))
            .limit(params.limit).offset(params.skip)
        )
        rows = (await self.session.execute(q)).scalars().all()
        total = (await self.session.execute(select(func.count()).select_from(Schedule).where(*cond))).scalar_one()
        return rows, total


class DoctorScheduleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def assigned_schedule_ids(self, doctor_id: uuid.UUID, ids: Sequence[uuid.UUID]) -> set[uuid.UUID]:
        res = await self.session.execute(
            select(DoctorSchedule.schedule_id).where(DoctorSchedule.doctor_id == doctor_id, DoctorSchedule.schedule_id.in_(ids))
        )
        return set(res.scalars().all())

    async def add_many(self, doctor_id: uuid.UUID, schedule_ids: Sequence[uuid.UUID]) -> int:
        for sid in schedule_ids:
            self.session.add(DoctorSchedule(doctor_id=doctor_id, schedule_id=sid, is_booked=False))
        await self.session.flush()
        return len(schedule_ids)

    async def get(self, doctor_id: uuid.UUID, schedule_id: uuid.UUID) -> DoctorSchedule | None:
        res = await self.session.execute(
            select(DoctorSchedule).where(DoctorSchedule.doctor_id == doctor_id, DoctorSchedule.schedule_id == schedule_id)
        )
        return res.scalar_one_or_none()

    async def delete_if_free(self, doctor_id: uuid.UUID, schedule_id: uuid.UUID) -> int:
        res = await self.session.execute(
            delete(DoctorSchedule).where(
                DoctorSchedule.doctor_id == doctor_id,
                DoctorSchedule.schedule_id == schedule_id,
                DoctorSchedule.is_booked.is_(False),
            )
        )
        return res.rowcount

    async def list_for_doctor(self, doctor_id: uuid.UUID, *, is_booked: bool | None, start_from: datetime | None, end_until: datetime | None, params: PageParams) -> tuple[Sequence[DoctorSchedule], int]:
        cond = [DoctorSchedule.doctor_id == doctor_id]
        if is_booked is not None:
            cond.append(DoctorSchedule.is_booked.is_(is_booked))
        if start_from:
            cond.append(Schedule.start_date_time >= start_from)
        if end_until:
            cond.append(Schedule.end_date_time <= end_until)

        if params.sort_by in {"start_date_time", "end_date_time"}:
            order = order_clause(Schedule, params, {"start_date_time", "end_date_time"})
        else:
            order = order_clause(DoctorSchedule, params, {"created_at", "updated_at", "is_booked"})
        q = (
            select(DoctorSchedule).join(Schedule, Schedule.id == DoctorSchedule.schedule_id)
            .where(*cond)
            .options(selectinload(DoctorSchedule.schedule))
            .order_by(order).limit(params.limit).offset(params.skip)
        )
        rows = (await self.session.execute(q)).scalars().all()
        count_q = select(func.count()).select_from(DoctorSchedule).join(Schedule, Schedule.id == DoctorSchedule.schedule_id).where(*cond)
        total = (await self.session.execute(count_q)).scalar_one()
        return rows, total
