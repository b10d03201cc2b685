"""Service wiring.

Everything a request handler needs hangs off one Services object stored on
app.state. Production wiring picks storage tiers from what connected at
startup; tests pass a Services built from in-memory fakes.
"""

from dataclasses import dataclass
import logging

from fastapi import Request

from dealflow.services.catalog import SqlCatalog
from dealflow.services.lifecycle import DealLifecycle, DealPolicy
from dealflow.services.notification import NotificationHandler, NotificationVerifier, VerifierConfig
from dealflow.services.order_system import OpenCartOrderSystem
from dealflow.services.payfast_client import PayFastClient
from dealflow.services.payment_request import MerchantConfig, PaymentRequestBuilder
from dealflow.settings import get_settings
from dealflow.stores.deal_repository import PostgresDealBackend
from dealflow.stores.deal_store import DealBackend, DealStore
from dealflow.stores.memory import MemoryDealBackend
from dealflow.stores.postgres import is_db_ready
from dealflow.stores.redis import RedisDealBackend, is_redis_ready

logger = logging.getLogger("uvicorn.error")


@dataclass
class Services:
    lifecycle: DealLifecycle
    payments: PaymentRequestBuilder
    notifications: NotificationHandler
    catalog: SqlCatalog | None = None
    payfast: PayFastClient | None = None
    order_system: OpenCartOrderSystem | None = None

    @property
    def store(self) -> DealStore:
        return self.lifecycle.store

    async def aclose(self) -> None:
        if self.payfast is not None:
            await self.payfast.close()
        if self.order_system is not None:
            await self.order_system.close()


def build_services() -> Services:
    """Wire production services from settings and live connections."""
    settings = get_settings()

    cache: DealBackend
    if is_redis_ready():
        cache = RedisDealBackend(ttl=settings.deal_cache_ttl)
    else:
        logger.warning("Redis unavailable, caching deals in process memory")
        cache = MemoryDealBackend()
    durable = PostgresDealBackend() if is_db_ready() else None
    if durable is None:
        logger.warning("Postgres unavailable, deals are not persisted durably")

    store = DealStore(cache=cache, durable=durable)
    catalog = SqlCatalog()
    order_system = OpenCartOrderSystem.from_settings() if settings.opencart_base_url else None
    if order_system is None:
        logger.warning("OPENCART_BASE_URL not set, paid deals will not create orders")

    lifecycle = DealLifecycle(
        store=store,
        catalog=catalog,
        order_system=order_system,
        policy=DealPolicy.from_settings(),
    )
    payfast = PayFastClient()
    verifier = NotificationVerifier(VerifierConfig.from_settings(), payfast)
    return Services(
        lifecycle=lifecycle,
        payments=PaymentRequestBuilder(MerchantConfig.from_settings()),
        notifications=NotificationHandler(lifecycle, verifier),
        catalog=catalog,
        payfast=payfast,
        order_system=order_system,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the Services wired for this app."""
    return request.app.state.services
