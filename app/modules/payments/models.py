import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, JSON
from app.core.base import Base, TimestampedMixin

UNPAID = "UNPAID"
PAID = "PAID"

class Payment(Base, TimestampedMixin):
    __tablename__ = "payment"

    appointment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("appointment.id", ondelete="CASCADE"), unique=True)
    # doctor's fee at booking time, major currency units
    amount: Mapped[int] = mapped_column(Integer)
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=UNPAID)  # UNPAID | PAID
    # key of the last gateway outcome applied; a repeat delivery is a no-op
    gateway_event_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    payment_gateway_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
