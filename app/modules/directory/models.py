import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer
from app.core.base import Base, TimestampedMixin, SoftDeleteMixin

class Doctor(Base, TimestampedMixin, SoftDeleteMixin):
    __tablename__ = "doctor"
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column(String(160), index=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    designation: Mapped[str | None] = mapped_column(String(160), nullable=True)
    # live fee; bookings copy it into payment.amount and never read it again
    appointment_fee: Mapped[int] = mapped_column(Integer, default=0)

class Patient(Base, TimestampedMixin, SoftDeleteMixin):
    __tablename__ = "patient"
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    contact_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
