import uuid
from datetime import datetime
from typing import Literal
from app.core.schemas import ApiModel

class PaymentOut(ApiModel):
    id: uuid.UUID
    amount: int
    transaction_id: str
    status: Literal["UNPAID", "PAID"]
    created_at: datetime
    updated_at: datetime

class PaymentSessionOut(ApiModel):
    payment_url: str | None
    transaction_id: str | None = None

class PaymentValidationOut(ApiModel):
    appointment_id: uuid.UUID
    payment_id: uuid.UUID
    status: str

class IpnAck(ApiModel):
    status: str

class WebhookAck(ApiModel):
    received: bool = True
