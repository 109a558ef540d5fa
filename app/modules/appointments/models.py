import uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Index, text
from app.core.base import Base, TimestampedMixin
from app.modules.directory.models import Doctor, Patient
from app.modules.schedules.models import Schedule
from app.modules.payments.models import Payment, UNPAID

SCHEDULED = "SCHEDULED"
COMPLETED = "COMPLETED"
CANCELED = "CANCELED"

class Appointment(Base, TimestampedMixin):
    __tablename__ = "appointment"
    __table_args__ = (
        # at most one live appointment per slot; canceled rows stay for audit
        Index(
            "uq_appointment_live_slot", "doctor_id", "schedule_id", unique=True,
            postgresql_where=text("status != 'CANCELED'"),
            sqlite_where=text("status != 'CANCELED'"),
        ),
    )

    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("patient.id"), index=True)
    doctor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("doctor.id"), index=True)
    schedule_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("schedule.id"))
    video_calling_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(16), default=SCHEDULED)  # SCHEDULED | COMPLETED | CANCELED
    payment_status: Mapped[str] = mapped_column(String(16), default=UNPAID)  # UNPAID | PAID

    patient: Mapped[Patient] = relationship(lazy="raise")
    doctor: Mapped[Doctor] = relationship(lazy="raise")
    schedule: Mapped[Schedule] = relationship(lazy="raise")
    payment: Mapped[Payment | None] = relationship(lazy="raise", uselist=False, passive_deletes=True)
