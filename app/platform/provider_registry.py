from app.core.config import settings
from app.platform.ports.event_bus import EventBusPort
from app.platform.adapters.bus_noop import NoopEventBus
from app.platform.adapters.bus_redis import RedisEventBus
from app.platform.ports.payment_gateway import PaymentGatewayPort
from app.platform.adapters.gateway_stripe import StripeGateway

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _payment_gateway: PaymentGatewayPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def payment_gateway(cls) -> PaymentGatewayPort:
        if cls._payment_gateway is None:
            # stripe is the only gateway shipped; PAYMENT_GATEWAY_PROVIDER is validated in settings
            cls._payment_gateway = StripeGateway()
        return cls._payment_gateway

registry = ProviderRegistry()
