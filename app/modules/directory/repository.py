import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.modules.directory.models import Doctor, Patient

class DirectoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_doctor(self, **data) -> Doctor:
        obj = Doctor(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def create_patient(self, **data) -> Patient:
        obj = Patient(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_active_doctor(self, doctor_id: uuid.UUID) -> Doctor | None:
        res = await self.session.execute(select(Doctor).where(Doctor.id == doctor_id, Doctor.deleted_at.is_(None)))
        return res.scalar_one_or_none()

    async def doctor_by_email(self, email: str) -> Doctor | None:
        res = await self.session.execute(select(Doctor).where(Doctor.email == email, Doctor.deleted_at.is_(None)))
        return res.scalar_one_or_none()

    async def patient_by_email(self, email: str) -> Patient | None:
        res = await self.session.execute(select(Patient).where(Patient.email == email, Patient.deleted_at.is_(None)))
        return res.scalar_one_or_none()

    async def set_doctor_fee(self, doctor_id: uuid.UUID, fee: int) -> Doctor | None:
        obj = await self.get_active_doctor(doctor_id)
        if not obj:
            return None
        obj.appointment_fee = fee
        await self.session.flush()
        return obj
