"""Downstream order system (OpenCart REST admin API).

Called once per paid deal. Failures surface as IntegrationFailure and are
never allowed to undo a payment; the lifecycle records them for manual
reconciliation instead of retrying.

SKU resolution (catalog SKU -> OpenCart product_id), first hit wins:
1. exact SKU match                      "5758_en-gb-ZAR"
2. base SKU before the first "_"         "5758" (exact, then prefix match)
3. numeric base SKU as a product_id      product 5758
4. no match -> product_id 0 (order still created, flagged in the comment)

Auth: OAuth client-credentials bearer token + admin login, cached for an
hour and refreshed 5 minutes before it expires.
"""

from dataclasses import dataclass, field
from decimal import Decimal
import logging
import time
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from dealflow.domain import BuyerContact, DeliveryAddress
from dealflow.errors import IntegrationFailure
from dealflow.settings import get_settings

logger = logging.getLogger("uvicorn.error")

# South African provinces -> OpenCart zone ids
SA_ZONES: dict[str, int] = {
    "eastern cape": 3099,
    "free state": 3100,
    "gauteng": 3101,
    "kwazulu-natal": 3102,
    "kzn": 3102,
    "limpopo": 3103,
    "mpumalanga": 3104,
    "north west": 3105,
    "northern cape": 3106,
    "western cape": 3107,
}
SA_COUNTRY_ID = 198
SA_COUNTRY_NAME = "South Africa"
DEFAULT_PROVINCE = "gauteng"

TOKEN_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_BUFFER_SECONDS = 300


def get_zone_info(province: str) -> tuple[int, str]:
    """Map a province name to (zone_id, display name); unknown -> Gauteng."""
    zone_id = SA_ZONES.get(province.lower().strip(), SA_ZONES[DEFAULT_PROVINCE])
    name = next(k for k, v in SA_ZONES.items() if v == zone_id)
    return zone_id, name.title()


@dataclass(frozen=True)
class OrderLineItem:
    sku: str | None
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PaymentMeta:
    deal_token: str
    external_payment_ref: str | None
    amount: Decimal
    method: str = "PayFast"
    code: str = "payfast"


@dataclass(frozen=True)
class ResolvedProduct:
    product_id: int
    name: str | None = None
    model: str | None = None


class OrderSystem(Protocol):
    async def create_order(
        self,
        customer: BuyerContact,
        address: DeliveryAddress,
        line_item: OrderLineItem,
        payment_meta: PaymentMeta,
    ) -> str:
        ...


class ProductDirectory(Protocol):
    """Product lookups the SKU resolver needs from the order system."""

    async def search_by_sku(self, term: str) -> list[dict[str, Any]]:
        ...

    async def get_product(self, product_id: int) -> dict[str, Any] | None:
        ...


def _resolved(item: dict[str, Any]) -> ResolvedProduct:
    return ResolvedProduct(
        product_id=int(item["product_id"]),
        name=item.get("name"),
        model=item.get("model"),
    )


@dataclass
class SkuResolver:
    """Fuzzy SKU -> product lookup with a fixed fallback order."""

    directory: ProductDirectory
    separator: str = "_"

    async def resolve(self, sku: str | None) -> ResolvedProduct | None:
        if not sku:
            return None

        exact = await self._find(sku, lambda candidate: candidate == sku.lower())
        if exact:
            return exact

        base = sku.split(self.separator)[0]
        if base and base != sku:
            prefixed = await self._find(
                base,
                lambda candidate: candidate == base.lower() or candidate.startswith(base.lower()),
            )
            if prefixed:
                return prefixed

        if base.isdigit():
            item = await self.directory.get_product(int(base))
            if item:
                return _resolved(item)

        return None

    async def _find(self, term: str, matches) -> ResolvedProduct | None:
        for item in await self.directory.search_by_sku(term):
            candidate = str(item.get("sku") or "").lower()
            if candidate and matches(candidate):
                return _resolved(item)
        return None


@dataclass
class OpenCartOrderSystem:
    """OpenCart REST admin client implementing OrderSystem."""

    base_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    admin_username: str = "admin"
    admin_password: str = ""
    timeout: float = 30.0
    http_client: httpx.AsyncClient | None = None
    _bearer: str = field(default="", init=False, repr=False)
    _token_expiry: float = field(default=0.0, init=False, repr=False)

    @classmethod
    def from_settings(cls) -> "OpenCartOrderSystem":
        settings = get_settings()
        return cls(
            base_url=settings.opencart_base_url,
            client_id=settings.opencart_client_id,
            client_secret=settings.opencart_client_secret,
            admin_username=settings.opencart_admin_username,
            admin_password=settings.opencart_admin_password,
            timeout=settings.opencart_timeout,
        )

    @property
    def resolver(self) -> SkuResolver:
        return SkuResolver(directory=self)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=self.timeout)
        return self.http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None

    def _route(self, route: str) -> str:
        return f"{self.base_url.rstrip('/')}/index.php?route={route}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> tuple[int, dict[str, Any]]:
        client = await self._get_client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise IntegrationFailure(f"OpenCart request failed: {e}", {"url": url}) from e
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        return resp.status_code, payload if isinstance(payload, dict) else {"data": payload}

    async def authenticate(self) -> None:
        """Obtain (or reuse) a bearer token and log in as admin."""
        if self._bearer and time.time() < self._token_expiry - TOKEN_REFRESH_BUFFER_SECONDS:
            return
        if not self.base_url:
            raise IntegrationFailure("OPENCART_BASE_URL is not set")

        status, payload = await self._request(
            "POST",
            self._route("rest/admin_security/gettoken&grant_type=client_credentials"),
            auth=(self.client_id, self.client_secret),
        )
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        bearer = data.get("access_token") or payload.get("access_token")
        if status >= 400 or not bearer:
            raise IntegrationFailure(f"OpenCart token request failed ({status})", {"response": payload})

        status, payload = await self._request(
            "POST",
            self._route("rest/admin_security/login"),
            headers={"Authorization": f"Bearer {bearer}"},
            json={"username": self.admin_username, "password": self.admin_password},
        )
        if status >= 400 or not payload.get("success"):
            raise IntegrationFailure(f"OpenCart admin login failed ({status})", {"response": payload})

        self._bearer = bearer
        self._token_expiry = time.time() + TOKEN_LIFETIME_SECONDS

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._bearer}"}

    async def search_by_sku(self, term: str) -> list[dict[str, Any]]:
        await self.authenticate()
        status, payload = await self._request(
            "GET",
            f"{self.base_url.rstrip('/')}/api/rest_admin/products/search/{quote(term, safe='')}",
            headers=self._auth_headers(),
        )
        data = payload.get("data")
        if status >= 400 or not payload.get("success") or not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def get_product(self, product_id: int) -> dict[str, Any] | None:
        await self.authenticate()
        status, payload = await self._request(
            "GET",
            f"{self.base_url.rstrip('/')}/api/rest_admin/products/{product_id}",
            headers=self._auth_headers(),
        )
        data = payload.get("data")
        if status >= 400 or not payload.get("success") or not isinstance(data, dict):
            return None
        return data

    def build_order_payload(
        self,
        customer: BuyerContact,
        address: DeliveryAddress,
        line_item: OrderLineItem,
        payment_meta: PaymentMeta,
        product: ResolvedProduct | None,
    ) -> dict[str, Any]:
        zone_id, zone_name = get_zone_info(address.province or DEFAULT_PROVINCE)
        order_address = {
            "firstname": customer.first_name,
            "lastname": customer.last_name,
            "address_1": address.address1,
            "address_2": address.address2 or "",
            "city": address.city,
            "postcode": address.postal_code,
            "country_id": SA_COUNTRY_ID,
            "zone_id": zone_id,
            "country": SA_COUNTRY_NAME,
            "zone": zone_name,
        }
        comment = (
            f"Deal {payment_meta.deal_token} - PayFast ID: {payment_meta.external_payment_ref} - "
            f"Product: {line_item.name} - Price: R{line_item.unit_price}"
        )
        if product is None:
            comment += f" - UNMATCHED SKU {line_item.sku}"
        return {
            "products": [
                {
                    "product_id": product.product_id if product else 0,
                    "quantity": line_item.quantity,
                    "option": {},
                }
            ],
            "customer": {
                "customer_id": 0,  # guest checkout
                "firstname": customer.first_name,
                "lastname": customer.last_name,
                "email": customer.email,
                "telephone": customer.phone,
            },
            "payment_address": order_address,
            "shipping_address": order_address,
            "payment_method": {"title": payment_meta.method, "code": payment_meta.code},
            "shipping_method": {"title": "Store Pickup - Deal", "code": "pickup.pickup"},
            "comment": comment,
        }

    async def create_order(
        self,
        customer: BuyerContact,
        address: DeliveryAddress,
        line_item: OrderLineItem,
        payment_meta: PaymentMeta,
    ) -> str:
        """Create the order and return its OpenCart order id.

        Raises:
            IntegrationFailure: OpenCart unreachable or rejected the order.
        """
        await self.authenticate()

        product = await self.resolver.resolve(line_item.sku)
        if product is None:
            logger.warning(f"No OpenCart product for SKU {line_item.sku}, ordering with product_id 0")

        payload = self.build_order_payload(customer, address, line_item, payment_meta, product)
        status, body = await self._request(
            "POST",
            self._route("rest/order_admin/orderadmin"),
            headers=self._auth_headers(),
            json=payload,
        )
        if status >= 400 or not body.get("success"):
            message = body.get("error") or body.get("message") or f"Order creation failed ({status})"
            raise IntegrationFailure(str(message), {"status": status, "deal": payment_meta.deal_token})

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        order_id = data.get("order_id") or body.get("order_id")
        if not order_id:
            raise IntegrationFailure("OpenCart response has no order_id", {"deal": payment_meta.deal_token})

        logger.info(f"OpenCart order {order_id} created for deal {payment_meta.deal_token}")
        return str(order_id)
