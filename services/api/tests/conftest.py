"""Shared fixtures: in-memory store, fake catalog and order system.

Nothing here touches the network, Postgres or Redis.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dealflow.domain import BuyerContact, CatalogProduct, DeliveryAddress
from dealflow.errors import IntegrationFailure, NotFound, ProductUnavailable
from dealflow.services.catalog import ProductSearchHit
from dealflow.services.lifecycle import DealLifecycle, DealPolicy
from dealflow.stores.deal_store import DealStore
from dealflow.stores.memory import MemoryDealBackend

PASSPHRASE = "jt7NOE43FZPn"
PAYFAST_IP = "197.97.145.144"


class FrozenClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 11, 27, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeCatalog:
    def __init__(self, *products: CatalogProduct) -> None:
        self.products = {p.id: p for p in products}
        self.decrements: list[tuple[str, int]] = []

    async def find_active_product(self, product_id: str) -> CatalogProduct:
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product not found", {"product_id": product_id})
        if not product.active:
            raise ProductUnavailable("Product is not active", {"product_id": product_id})
        return product

    async def decrement_stock(self, product_id: str, amount: int) -> int:
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product not found", {"product_id": product_id})
        self.decrements.append((product_id, amount))
        new_stock = max(product.stock - amount, 0)
        self.products[product_id] = replace(product, stock=new_stock)
        return new_stock

    async def search_products(self, query: str, markup_fraction: Decimal, limit: int = 10) -> list[ProductSearchHit]:
        if len(query.strip()) < 2:
            return []
        q = query.strip().lower()
        return [
            ProductSearchHit(product=p, deal_price=p.base_cost * (1 + markup_fraction) if p.base_cost else None)
            for p in self.products.values()
            if p.stock > 0 and q in p.name.lower()
        ][:limit]


class FakeOrderSystem:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    async def create_order(self, customer, address, line_item, payment_meta) -> str:
        self.calls.append(
            {"customer": customer, "address": address, "line_item": line_item, "payment_meta": payment_meta}
        )
        if self.fail:
            raise IntegrationFailure("OpenCart unavailable", {"status": 503})
        return f"OC-{len(self.calls)}"


def make_product(**overrides) -> CatalogProduct:
    values = {
        "id": "prod-1",
        "name": "Philips Air Fryer 4.1L",
        "stock": 5,
        "base_cost": Decimal("1000.00"),
        "selling_price": Decimal("1599.00"),
        "sku": "7031_en-gb-ZAR",
    }
    values.update(overrides)
    return CatalogProduct(**values)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def cache_backend() -> MemoryDealBackend:
    return MemoryDealBackend()


@pytest.fixture
def store(cache_backend: MemoryDealBackend) -> DealStore:
    return DealStore(cache=cache_backend)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(
        make_product(),
        make_product(id="prod-cheap", name="USB-C Cable", stock=100, base_cost=Decimal("100.00"), sku="88_en-gb-ZAR"),
    )


@pytest.fixture
def order_system() -> FakeOrderSystem:
    return FakeOrderSystem()


@pytest.fixture
def lifecycle(store: DealStore, catalog: FakeCatalog, order_system: FakeOrderSystem, clock: FrozenClock) -> DealLifecycle:
    return DealLifecycle(store=store, catalog=catalog, order_system=order_system, policy=DealPolicy(), clock=clock)


@pytest.fixture
def buyer() -> BuyerContact:
    return BuyerContact.from_full_name("Thandi van der Merwe", "thandi@example.co.za", "0821234567")


@pytest.fixture
def address() -> DeliveryAddress:
    return DeliveryAddress(
        address1="12 Long Street",
        city="Cape Town",
        province="Western Cape",
        postal_code="8001",
    )
