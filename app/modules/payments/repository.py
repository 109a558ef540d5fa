import uuid
from sqlalchemy import select, update, delete, exists
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.base import utcnow
from app.modules.payments.models import Payment, PAID, UNPAID

class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, *, appointment_id: uuid.UUID, amount: int, status: str = UNPAID, gateway_data: dict | None = None) -> Payment:
        obj = Payment(
            appointment_id=appointment_id,
            amount=amount,
            transaction_id=str(uuid.uuid4()),
            status=status,
            payment_gateway_data=gateway_data,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, payment_id: uuid.UUID) -> Payment | None:
        res = await self.session.execute(select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True))
        return res.scalar_one_or_none()

    async def by_transaction_id(self, transaction_id: str) -> Payment | None:
        res = await self.session.execute(select(Payment).where(Payment.transaction_id == transaction_id).execution_options(populate_existing=True))
        return res.scalar_one_or_none()

    async def event_seen(self, event_key: str) -> bool:
        res = await self.session.execute(select(exists().where(Payment.gateway_event_id == event_key)))
        return bool(res.scalar())

    async def settle(self, payment_id: uuid.UUID, *, event_key: str | None, snapshot: dict) -> int:
        # UNPAID -> PAID only; a settled payment is never touched again
        res = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == UNPAID)
            .values(status=PAID, gateway_event_id=event_key, payment_gateway_data=snapshot, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def record_unpaid_outcome(self, payment_id: uuid.UUID, *, event_key: str, snapshot: dict) -> int:
        # gateway_event_id keeps only the latest unpaid key; earlier ones may be applied again as no-ops
        res = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == UNPAID)
            .values(gateway_event_id=event_key, payment_gateway_data=snapshot, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def delete_for_appointment(self, appointment_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(Payment).where(Payment.appointment_id == appointment_id).execution_options(synchronize_session=False)
        )
