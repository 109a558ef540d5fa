import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Boolean, text
from app.core.base import Base, TimestampedMixin

APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
APPOINTMENT_STATUS_UPDATED = "APPOINTMENT_STATUS_UPDATED"
APPOINTMENT_CANCELED = "APPOINTMENT_CANCELED"
PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"

class Notification(Base, TimestampedMixin):
    recipient_email: Mapped[str] = mapped_column(String(255), index=True)
    recipient_role: Mapped[str] = mapped_column(String(16))  # PATIENT | DOCTOR | ADMIN
    type: Mapped[str] = mapped_column(String(48))
    title: Mapped[str] = mapped_column(String(160))
    message: Mapped[str] = mapped_column(Text)
    link: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
