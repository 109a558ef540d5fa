import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.modules.events.outbox import OutboxService
from app.modules.notifications.models import Notification
from app.modules.notifications.schemas import NotificationDraft

log = logging.getLogger(__name__)

class NotificationsService:
    """In-app notifications. Rows and their outbox events join the caller's transaction."""

    def __init__(self, s: AsyncSession):
        self.s = s
        self.outbox = OutboxService(s)

    async def emit_many(self, drafts: list[NotificationDraft]) -> list[Notification]:
        rows = []
        for d in drafts:
            n = Notification(
                recipient_email=d.recipient_email, recipient_role=d.recipient_role, type=d.type,
                title=d.title, message=d.message, link=d.link, appointment_id=d.appointment_id, is_read=False,
            )
            self.s.add(n)
            rows.append(n)
        await self.s.flush()
        for n in rows:
            await self.outbox.enqueue("notification.created", "notification", n.id, {
                "recipient_email": n.recipient_email,
                "recipient_role": n.recipient_role,
                "type": n.type,
                "title": n.title,
            })
        log.debug(f"queued {len(rows)} notifications")
        return rows

    async def for_recipient(self, email: str) -> list[Notification]:
        res = await self.s.execute(
            select(Notification).where(Notification.recipient_email == email).order_by(Notification.created_at.desc())
        )
        return list(res.scalars().all())
