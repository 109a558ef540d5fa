import json
import logging
from redis.asyncio import from_url as redis_from_url
from app.platform.ports.event_bus import EventBusPort
from app.core.config import settings

log = logging.getLogger("bus.redis")

class RedisEventBus(EventBusPort):
    """Appends domain events to a capped Redis stream; consumers read with XREADGROUP."""

    def __init__(self, url: str | None = None, stream: str | None = None):
        url = url or settings.REDIS_URL
        if not url:
            raise RuntimeError("EVENT_BUS_PROVIDER=redis requires REDIS_URL")
        self.redis = redis_from_url(url, encoding="utf-8", decode_responses=True)
        self.stream = stream or settings.REDIS_STREAM or "nexus.events"

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        fields = {
            "topic": topic,
            "key": key,
            "event_type": value.get("event_type", ""),
            "value": json.dumps(value, default=str),
            "headers": json.dumps(headers or {}),
        }
        entry_id = await self.redis.xadd(self.stream, fields, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        log.debug(f"[REDIS BUS] XADD {self.stream} id={entry_id} event={fields['event_type']} key={key}")

    async def aclose(self) -> None:
        await self.redis.aclose()
