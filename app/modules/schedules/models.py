import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP, ForeignKey, Boolean, UniqueConstraint, text
from app.core.base import Base, TimestampedMixin, utcnow

class Schedule(Base, TimestampedMixin):
    __tablename__ = "schedule"
    __table_args__ = (UniqueConstraint("start_date_time", "end_date_time", name="uq_schedule_interval"),)

    # [start, end) in UTC; immutable once created
    start_date_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), index=True)
    end_date_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

class DoctorSchedule(Base):
    __tablename__ = "doctor_schedule"

    doctor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("doctor.id", ondelete="CASCADE"), primary_key=True)
    schedule_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("schedule.id", ondelete="CASCADE"), primary_key=True)
    is_booked: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    # weak back-reference for lookup only; appointment.* is the source of truth
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, server_default=text("CURRENT_TIMESTAMP"))
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, server_default=text("CURRENT_TIMESTAMP"), onupdate=utcnow)

    schedule: Mapped[Schedule] = relationship(lazy="raise")
