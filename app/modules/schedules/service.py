import uuid
import logging
from datetime import datetime, timedelta, timezone
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.errors import Conflict, DoctorNotFound, NotFound, ScheduleNotFound, ValidationFailed
from app.core.paging import PageParams, page_of
from app.core.security import Principal
from app.modules.directory.models import Doctor
from app.modules.directory.repository import DirectoryRepository
from app.modules.schedules.models import Schedule
from app.modules.schedules.repository import ScheduleRepository, DoctorScheduleRepository
from app.modules.schedules.schemas import ScheduleCreate, ScheduleOut, DoctorScheduleCreate

logger = logging.getLogger(__name__)

async def resolve_doctor(directory: DirectoryRepository, principal: Principal, doctor_id: uuid.UUID | None = None) -> Doctor:
    """The caller's own doctor profile, or for admins the doctor they name."""
    if principal.is_admin:
        if doctor_id is None:
            raise ValidationFailed("doctorId is required when acting as admin")
        doctor = await directory.get_active_doctor(doctor_id)
    else:
        doctor = await directory.doctor_by_email(principal.email)
    if not doctor:
        raise DoctorNotFound("Doctor profile not found for this account")
    return doctor

def _window_bounds(day, payload: ScheduleCreate) -> tuple[datetime, datetime]:
    return (
        datetime.combine(day, payload.start_time, tzinfo=timezone.utc),
        datetime.combine(day, payload.end_time, tzinfo=timezone.utc),
    )

class ScheduleService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = ScheduleRepository(session)
        self.directory = DirectoryRepository(session)

    async def create_schedules(self, payload: ScheduleCreate) -> list[ScheduleOut]:
        """
        Partition each day's window into fixed-width slots and store the ones
        that don't exist yet. Each slot commits on its own, so a failed run can
        simply be repeated.
        """
        if payload.end_date < payload.start_date:
            raise ValidationFailed("endDate must not be before startDate")
        if payload.end_time <= payload.start_time:
            raise ValidationFailed("endTime must be after startTime")
        interval = timedelta(minutes=settings.SLOT_INTERVAL_MINUTES)
        created: list[ScheduleOut] = []
        day = payload.start_date
        while day <= payload.end_date:
            window_start, window_end = _window_bounds(day, payload)
            slot_start = window_start
            while slot_start + interval <= window_end:
                slot_end = slot_start + interval
                if not await self.repo.find_exact(slot_start, slot_end):
                    try:
                        obj = await self.repo.create(slot_start, slot_end)
                        await self.session.commit()
                        created.append(ScheduleOut.model_validate(obj))
                    except IntegrityError:
                        # created concurrently by another generator run
                        await self.session.rollback()
                slot_start = slot_end
            day += timedelta(days=1)
        logger.info(f"Generated {len(created)} schedules for {payload.start_date}..{payload.end_date}")
        return created

    async def list_available_for_doctor(self, principal: Principal, *, start_from: datetime | None, end_until: datetime | None, params: PageParams) -> dict:
        doctor = await resolve_doctor(self.directory, principal)
        rows, total = await self.repo.list_unassigned(doctor.id, start_from=start_from, end_until=end_until, params=params)
        return page_of(list(rows), total, params)

    async def delete_schedule(self, schedule_id: uuid.UUID) -> Schedule:
        obj = await self.repo.get(schedule_id)
        if not obj:
            raise ScheduleNotFound()
        if await self.repo.is_assigned(schedule_id):
            raise Conflict("Schedule is assigned to a doctor and cannot be deleted")
        await self.repo.delete(schedule_id)
        await self.session.commit()
        return obj


class DoctorScheduleService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = DoctorScheduleRepository(session)
        self.schedules = ScheduleRepository(session)
        self.directory = DirectoryRepository(session)

    async def assign(self, principal: Principal, payload: DoctorScheduleCreate) -> dict:
        doctor = await resolve_doctor(self.directory, principal, payload.doctor_id)
        wanted = list(dict.fromkeys(payload.schedule_ids))
        found = await self.schedules.existing_ids(wanted)
        missing = [str(sid) for sid in wanted if sid not in found]
        if missing:
            raise ScheduleNotFound("One or more scheduleIds are invalid", schedule_ids=missing)

        already = await self.repo.assigned_schedule_ids(doctor.id, wanted)
        fresh = [sid for sid in wanted if sid not in already]
        try:
            count = await self.repo.add_many(doctor.id, fresh)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise Conflict("Schedules were assigned concurrently; retry the request")
        return {"count": count}

    async def list_for_doctor(self, principal: Principal, *, is_booked: bool | None, start_from: datetime | None, end_until: datetime | None, params: PageParams) -> dict:
        doctor = await resolve_doctor(self.directory, principal)
        rows, total = await self.repo.list_for_doctor(doctor.id, is_booked=is_booked, start_from=start_from, end_until=end_until, params=params)
        return page_of(list(rows), total, params)

    async def unassign(self, principal: Principal, schedule_id: uuid.UUID, doctor_id: uuid.UUID | None = None) -> None:
        doctor = await resolve_doctor(self.directory, principal, doctor_id)
        owner_id = doctor.id
        deleted = await self.repo.delete_if_free(owner_id, schedule_id)
        if deleted:
            await self.session.commit()
            return
        await self.session.rollback()
        if await self.repo.get(owner_id, schedule_id):
            raise Conflict("Slot is booked and cannot be removed")
        raise NotFound("Doctor schedule not found")
