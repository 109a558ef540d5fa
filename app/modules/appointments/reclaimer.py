import uuid
import asyncio
import logging
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.base import utcnow
from app.modules.appointments import notices
from app.modules.appointments.repository import AppointmentRepository
from app.modules.events.outbox import OutboxService
from app.modules.notifications.service import NotificationsService
from app.modules.payments.repository import PaymentRepository
from app.modules.schedules.ledger import SlotLedger

log = logging.getLogger("appointments.reclaimer")

class UnpaidReservationReclaimer:
    """
    Cancels appointments still unpaid after the grace window and frees their slots.

    Each candidate is handled in its own transaction, guarded by a conditional
    update that only matches ``SCHEDULED`` + ``UNPAID``. A payment that lands
    first wins; one that lands after the cancel is left for a manual refund.
    """

    def __init__(self, session_factory: async_sessionmaker, grace: timedelta, interval: float):
        self.session_factory = session_factory
        self.grace = grace
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="unpaid-reservation-reclaimer")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self):
        log.info(f"Reclaimer started: grace={self.grace} interval={self.interval}s")
        try:
            while True:
                try:
                    await self.sweep_once()
                except Exception:
                    log.exception("Reclaim sweep failed; retrying next tick")
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            log.info("Reclaimer cancelled; shutting down")
            raise

    async def sweep_once(self, now: datetime | None = None) -> list[uuid.UUID]:
        cutoff = (now or utcnow()) - self.grace
        async with self.session_factory() as session:
            candidates = await AppointmentRepository(session).unpaid_before(cutoff)

        reclaimed: list[uuid.UUID] = []
        for appointment_id, doctor_id, schedule_id in candidates:
            try:
                if await self._reclaim(appointment_id, doctor_id, schedule_id):
                    reclaimed.append(appointment_id)
            except Exception:
                log.exception(f"Could not reclaim appointment {appointment_id}")
        if reclaimed:
            log.info(f"Reclaimed {len(reclaimed)} unpaid appointments older than {cutoff.isoformat()}")
        return reclaimed

    async def _reclaim(self, appointment_id: uuid.UUID, doctor_id: uuid.UUID, schedule_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            appts = AppointmentRepository(session)
            try:
                if not await appts.cancel_if_unpaid(appointment_id):
                    # paid or cancelled since the candidate query ran
                    await session.rollback()
                    return False
                await PaymentRepository(session).delete_for_appointment(appointment_id)
                await SlotLedger(session).release(doctor_id, schedule_id)
                appt = await appts.get_full(appointment_id)
                await NotificationsService(session).emit_many(notices.reclaimed(appt))
                await OutboxService(session).enqueue("appointment.canceled", "appointment", appointment_id, {"reason": "unpaid_timeout"})
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        log.debug(f"Appointment {appointment_id} reclaimed; slot doctor={doctor_id} schedule={schedule_id} released")
        return True
