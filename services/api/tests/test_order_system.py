import json
from decimal import Decimal

import httpx
import pytest

from dealflow.domain import BuyerContact, DeliveryAddress
from dealflow.errors import IntegrationFailure
from dealflow.services.order_system import (
    SA_COUNTRY_ID,
    OpenCartOrderSystem,
    OrderLineItem,
    PaymentMeta,
    SkuResolver,
    get_zone_info,
)

BASE_URL = "https://shop.example.co.za"


class FakeDirectory:
    def __init__(self, products: list[dict], by_id: dict[int, dict] | None = None) -> None:
        self.products = products
        self.by_id = by_id or {}
        self.searches: list[str] = []

    async def search_by_sku(self, term: str) -> list[dict]:
        self.searches.append(term)
        return [p for p in self.products if term.lower() in p["sku"].lower()]

    async def get_product(self, product_id: int) -> dict | None:
        return self.by_id.get(product_id)


class OpenCartStub:
    """Mock OpenCart REST admin API."""

    def __init__(self, order_ok: bool = True, products: list[dict] | None = None) -> None:
        self.order_ok = order_ok
        self.products = products if products is not None else [{"product_id": 5758, "sku": "5758_en-gb-ZAR"}]
        self.token_requests = 0
        self.orders: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        route = request.url.params.get("route", "")
        path = request.url.path

        if route == "rest/admin_security/gettoken":
            self.token_requests += 1
            assert request.headers["authorization"].startswith("Basic ")
            return httpx.Response(200, json={"success": 1, "data": {"access_token": "bearer-123"}})
        if route == "rest/admin_security/login":
            assert request.headers["authorization"] == "Bearer bearer-123"
            return httpx.Response(200, json={"success": 1, "data": {}})
        if path.startswith("/api/rest_admin/products/search/"):
            term = path.rsplit("/", 1)[-1].lower()
            hits = [p for p in self.products if term in p["sku"].lower()]
            return httpx.Response(200, json={"success": 1, "data": hits})
        if path.startswith("/api/rest_admin/products/"):
            return httpx.Response(404, json={"success": 0, "error": ["not found"]})
        if route == "rest/order_admin/orderadmin":
            self.orders.append(json.loads(request.content))
            if not self.order_ok:
                return httpx.Response(400, json={"success": 0, "error": "Invalid product"})
            return httpx.Response(200, json={"success": 1, "data": {"order_id": 4321}})
        return httpx.Response(404)

    def system(self, base_url: str = BASE_URL) -> OpenCartOrderSystem:
        return OpenCartOrderSystem(
            base_url=base_url,
            client_id="client",
            client_secret="secret",
            admin_password="pw",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self)),
        )


def order_args(sku: str | None = "5758_en-gb-ZAR", province: str = "Western Cape") -> dict:
    return {
        "customer": BuyerContact(first_name="Thandi", last_name="Nkosi", email="t@example.co.za", phone="0821234567"),
        "address": DeliveryAddress(address1="12 Long St", city="Cape Town", province=province, postal_code="8001"),
        "line_item": OrderLineItem(sku=sku, name="Air Fryer", quantity=2, unit_price=Decimal("1150")),
        "payment_meta": PaymentMeta(deal_token="tok-1", external_payment_ref="1089250", amount=Decimal("2300.00")),
    }


def test_zone_lookup():
    assert get_zone_info("Western Cape") == (3107, "Western Cape")
    assert get_zone_info("  KZN ") == (3102, "Kwazulu-Natal")
    assert get_zone_info("Atlantis") == (3101, "Gauteng")


# ------------------------------------------------------------
# SKU resolution
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolver_prefers_exact_sku():
    directory = FakeDirectory([{"product_id": 1, "sku": "5758"}, {"product_id": 2, "sku": "5758_en-gb-ZAR"}])
    resolved = await SkuResolver(directory).resolve("5758_en-gb-ZAR")
    assert resolved.product_id == 2


@pytest.mark.asyncio
async def test_resolver_falls_back_to_base_sku_prefix():
    directory = FakeDirectory([{"product_id": 7, "sku": "5758-black"}])
    resolved = await SkuResolver(directory).resolve("5758_en-gb-ZAR")
    assert resolved.product_id == 7
    assert directory.searches == ["5758_en-gb-ZAR", "5758"]


@pytest.mark.asyncio
async def test_resolver_uses_numeric_base_as_product_id():
    directory = FakeDirectory([], by_id={5758: {"product_id": "5758", "name": "Air Fryer"}})
    resolved = await SkuResolver(directory).resolve("5758_en-gb-ZAR")
    assert resolved.product_id == 5758
    assert resolved.name == "Air Fryer"


@pytest.mark.asyncio
async def test_resolver_gives_up_without_match():
    resolver = SkuResolver(FakeDirectory([]))
    assert await resolver.resolve("ABC_en-gb-ZAR") is None
    assert await resolver.resolve(None) is None


# ------------------------------------------------------------
# OpenCartOrderSystem
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_order_posts_resolved_product_and_address():
    stub = OpenCartStub()
    order_id = await stub.system().create_order(**order_args())

    assert order_id == "4321"
    payload = stub.orders[0]
    assert payload["products"] == [{"product_id": 5758, "quantity": 2, "option": {}}]
    assert payload["shipping_address"]["zone_id"] == 3107
    assert payload["shipping_address"]["country_id"] == SA_COUNTRY_ID
    assert payload["customer"]["customer_id"] == 0
    assert payload["payment_method"]["code"] == "payfast"
    assert "1089250" in payload["comment"]


@pytest.mark.asyncio
async def test_unmatched_sku_orders_product_zero_and_flags_comment():
    stub = OpenCartStub(products=[])
    await stub.system().create_order(**order_args(sku="ZZZ_en-gb-ZAR"))

    payload = stub.orders[0]
    assert payload["products"][0]["product_id"] == 0
    assert "UNMATCHED SKU ZZZ_en-gb-ZAR" in payload["comment"]


@pytest.mark.asyncio
async def test_token_is_reused_between_orders():
    stub = OpenCartStub()
    system = stub.system()
    await system.create_order(**order_args())
    await system.create_order(**order_args())
    assert stub.token_requests == 1


@pytest.mark.asyncio
async def test_rejected_order_raises_integration_failure():
    stub = OpenCartStub(order_ok=False)
    with pytest.raises(IntegrationFailure):
        await stub.system().create_order(**order_args())


@pytest.mark.asyncio
async def test_unconfigured_order_system_raises_integration_failure():
    with pytest.raises(IntegrationFailure):
        await OpenCartStub().system(base_url="").create_order(**order_args())


@pytest.mark.asyncio
async def test_transport_error_raises_integration_failure():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    system = OpenCartOrderSystem(
        base_url=BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
    )
    with pytest.raises(IntegrationFailure):
        await system.create_order(**order_args())
