"""Deal domain types shared by stores and services.

A Deal is a plain dataclass so that every storage tier (process memory,
Redis JSON documents, PostgreSQL rows) can hold the same record.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

CENT = Decimal("0.01")


class DealStatus(str, Enum):
    """Lifecycle states of a deal."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({DealStatus.PAID, DealStatus.EXPIRED, DealStatus.CANCELLED})
OPEN_STATUSES = frozenset({DealStatus.PENDING, DealStatus.ACCEPTED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(amount: Decimal) -> Decimal:
    """Round to whole currency units, halves away from zero."""
    return amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def to_money(value: Any) -> Decimal:
    """Coerce a numeric value to a 2-decimal Decimal."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Any) -> str:
    """Render money with exactly two decimals and no locale formatting."""
    return f"{to_money(value):.2f}"


def compute_offer_price(cost_basis: Decimal, markup_fraction: Decimal) -> Decimal:
    return round_half_up(cost_basis * (Decimal(1) + markup_fraction))


def compute_shipping_fee(subtotal: Decimal, threshold: Decimal, fee: Decimal) -> Decimal:
    """Flat fee below the free-shipping threshold, free at or above it."""
    return to_money(0) if subtotal >= threshold else to_money(fee)


@dataclass(frozen=True)
class CatalogProduct:
    """Catalog item as seen by the deal flow."""

    id: str
    name: str
    stock: int
    base_cost: Decimal | None
    selling_price: Decimal | None
    sku: str | None = None
    brand: str | None = None
    model: str | None = None
    active: bool = True


@dataclass(frozen=True)
class BuyerContact:
    first_name: str
    last_name: str
    email: str
    phone: str = ""

    @classmethod
    def from_full_name(cls, full_name: str, email: str, phone: str = "") -> BuyerContact:
        """Split "First Rest Of Name"; last name falls back to the first name."""
        parts = full_name.strip().split(" ")
        first = parts[0] if parts else ""
        last = " ".join(p for p in parts[1:] if p) or first
        return cls(first_name=first, last_name=last, email=email.strip(), phone=phone.strip())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class DeliveryAddress:
    address1: str
    city: str
    province: str
    postal_code: str
    address2: str = ""


@dataclass
class Deal:
    """A time-limited personalized offer for one catalog item."""

    token: str
    product_ref: str
    product_name: str
    cost_basis: Decimal
    markup_fraction: Decimal
    offer_price: Decimal
    quantity: int
    shipping_fee: Decimal
    expiry: datetime
    status: DealStatus = DealStatus.PENDING
    product_sku: str | None = None
    buyer_email: str | None = None
    buyer_phone: str | None = None
    buyer: BuyerContact | None = None
    delivery_address: DeliveryAddress | None = None
    external_payment_ref: str | None = None
    downstream_order_ref: str | None = None
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.offer_price * self.quantity)

    @property
    def amount_due(self) -> Decimal:
        return to_money(self.offer_price * self.quantity + self.shipping_fee)

    def is_past_expiry(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expiry

    def with_changes(self, changes: dict[str, Any]) -> Deal:
        """Merge changes into a copy and bump the write version."""
        return replace(self, **changes, version=self.version + 1, updated_at=utcnow())

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (used by the Redis tier)."""
        data = asdict(self)
        for key in ("cost_basis", "markup_fraction", "offer_price", "shipping_fee"):
            data[key] = str(data[key])
        for key in ("expiry", "created_at", "updated_at"):
            data[key] = data[key].isoformat()
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Deal:
        buyer = data.get("buyer")
        address = data.get("delivery_address")
        return cls(
            token=data["token"],
            product_ref=data["product_ref"],
            product_name=data["product_name"],
            cost_basis=Decimal(str(data["cost_basis"])),
            markup_fraction=Decimal(str(data["markup_fraction"])),
            offer_price=Decimal(str(data["offer_price"])),
            quantity=int(data["quantity"]),
            shipping_fee=Decimal(str(data["shipping_fee"])),
            expiry=datetime.fromisoformat(data["expiry"]),
            status=DealStatus(data["status"]),
            product_sku=data.get("product_sku"),
            buyer_email=data.get("buyer_email"),
            buyer_phone=data.get("buyer_phone"),
            buyer=BuyerContact(**buyer) if buyer else None,
            delivery_address=DeliveryAddress(**address) if address else None,
            external_payment_ref=data.get("external_payment_ref"),
            downstream_order_ref=data.get("downstream_order_ref"),
            version=int(data.get("version", 1)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class PaymentIncident:
    """A swallowed failure kept for operator reconciliation."""

    kind: str
    message: str
    token: str | None = None
    detail: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
