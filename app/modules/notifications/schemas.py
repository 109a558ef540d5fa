import uuid
from dataclasses import dataclass
from datetime import datetime
from app.core.schemas import ApiModel

@dataclass
class NotificationDraft:
    recipient_email: str
    recipient_role: str
    type: str
    title: str
    message: str
    link: str | None = None
    appointment_id: uuid.UUID | None = None

class NotificationOut(ApiModel):
    id: uuid.UUID
    recipient_email: str
    recipient_role: str
    type: str
    title: str
    message: str
    link: str | None
    is_read: bool
    created_at: datetime
