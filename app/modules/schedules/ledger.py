import uuid
import logging
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.base import utcnow
from app.core.errors import SlotUnavailable
from app.modules.schedules.models import DoctorSchedule

log = logging.getLogger(__name__)

class SlotLedger:
    """
    Free/booked state per (doctor, schedule) pair.

    Every write is a single conditional UPDATE executed inside the caller's
    transaction. Two concurrent claims on the same pair race on the row; the
    store lets exactly one of them match ``is_booked = false``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_free(self, doctor_id: uuid.UUID, schedule_id: uuid.UUID) -> bool:
        res = await self.session.execute(
            select(DoctorSchedule.is_booked).where(
                DoctorSchedule.doctor_id == doctor_id,
                DoctorSchedule.schedule_id == schedule_id,
            )
        )
        booked = res.scalar_one_or_none()
        return booked is False

    async def try_claim(self, doctor_id: uuid.UUID, schedule_id: uuid.UUID) -> None:
        res = await self.session.execute(
            update(DoctorSchedule)
            .where(
                DoctorSchedule.doctor_id == doctor_id,
                DoctorSchedule.schedule_id == schedule_id,
                DoctorSchedule.is_booked.is_(False),
            )
            .values(is_booked=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise SlotUnavailable(doctor_id=str(doctor_id), schedule_id=str(schedule_id))
        log.debug(f"Claimed slot doctor={doctor_id} schedule={schedule_id}")

    async def attach(self, doctor_id: uuid.UUID, schedule_id: uuid.UUID, appointment_id: uuid.UUID) -> None:
        await self.session.execute(
            update(DoctorSchedule)
            .where(DoctorSchedule.doctor_id == doctor_id, DoctorSchedule.schedule_id == schedule_id)
            .values(appointment_id=appointment_id)
            .execution_options(synchronize_session=False)
        )

    async def release(self, doctor_id: uuid.UUID, schedule_id: uuid.UUID) -> None:
        await self.session.execute(
            update(DoctorSchedule)
            .where(DoctorSchedule.doctor_id == doctor_id, DoctorSchedule.schedule_id == schedule_id)
            .values(is_booked=False, appointment_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        log.debug(f"Released slot doctor={doctor_id} schedule={schedule_id}")
