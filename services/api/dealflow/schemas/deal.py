"""Schemas for the deal endpoints (/v1/deals, /v1/products)."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from dealflow.domain import BuyerContact, Deal, DeliveryAddress


class CreateDealRequest(BaseModel):
    """Request body for POST /v1/deals."""

    product_id: str = Field(alias="productId", min_length=1)
    quantity: int = Field(default=1, ge=1)
    email: str | None = None
    phone: str | None = None

    model_config = {"populate_by_name": True}


class BuyerIn(BaseModel):
    name: str = Field(min_length=1, description="Full name; split on the first space")
    email: str = ""
    phone: str = ""

    def to_domain(self) -> BuyerContact:
        return BuyerContact.from_full_name(self.name, self.email, self.phone)


class AddressIn(BaseModel):
    address1: str = Field(min_length=1)
    address2: str = ""
    city: str = Field(min_length=1)
    province: str = ""
    postal_code: str = Field(alias="postalCode", min_length=1)

    model_config = {"populate_by_name": True}

    def to_domain(self) -> DeliveryAddress:
        return DeliveryAddress(
            address1=self.address1.strip(),
            address2=self.address2.strip(),
            city=self.city.strip(),
            province=self.province.strip(),
            postal_code=self.postal_code.strip(),
        )


class PayDealRequest(BaseModel):
    """Request body for POST /v1/deals/{token}/pay."""

    buyer: BuyerIn
    address: AddressIn
    quantity: int | None = Field(default=None, ge=1)


class DealResponse(BaseModel):
    """Public view of a deal. Cost basis and markup are never exposed."""

    token: str
    product_id: str = Field(alias="productId")
    product_name: str = Field(alias="productName")
    offer_price: Decimal = Field(alias="offerPrice")
    quantity: int
    shipping_fee: Decimal = Field(alias="shippingFee")
    amount_due: Decimal = Field(alias="amountDue")
    status: str
    expiry: datetime
    expires_in_seconds: int = Field(alias="expiresInSeconds", ge=0)
    order_ref: str | None = Field(alias="orderRef", default=None)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_deal(cls, deal: Deal, now: datetime) -> "DealResponse":
        return cls(
            token=deal.token,
            product_id=deal.product_ref,
            product_name=deal.product_name,
            offer_price=deal.offer_price,
            quantity=deal.quantity,
            shipping_fee=deal.shipping_fee,
            amount_due=deal.amount_due,
            status=deal.status.value,
            expiry=deal.expiry,
            expires_in_seconds=max(0, int((deal.expiry - now).total_seconds())),
            order_ref=deal.downstream_order_ref,
        )


class ProductHit(BaseModel):
    """A single storefront search result."""

    id: str
    name: str
    brand: str | None = None
    model: str | None = None
    stock: int
    selling_price: Decimal | None = Field(alias="sellingPrice", default=None)
    deal_price: Decimal | None = Field(alias="dealPrice", default=None)

    model_config = {"populate_by_name": True}


class ProductSearchResponse(BaseModel):
    products: list[ProductHit]
