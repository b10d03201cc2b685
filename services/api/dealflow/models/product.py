"""Product model.

Catalog item that deals are priced from. Stock is the one counter shared
across deals; it is decremented on payment confirmation (never below 0).
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import DateTime, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from dealflow.stores.postgres import Base


def generate_product_id() -> str:
    """Generate unique product ID."""
    return str(uuid4())


class Product(Base):
    """Catalog product."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_product_id)

    # Display
    product_name: Mapped[str] = mapped_column(String(300), index=True)
    brand: Mapped[str | None] = mapped_column(String(100))
    model: Mapped[str | None] = mapped_column(String(100))
    sku: Mapped[str | None] = mapped_column(String(100), index=True)  # e.g. "5758_en-gb-ZAR"
    description: Mapped[str | None] = mapped_column(Text)

    # Pricing (cost_price is the deal cost basis; selling_price is a fallback)
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    selling_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    # Availability
    total_stock: Mapped[int] = mapped_column(default=0)
    active: Mapped[bool] = mapped_column(default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.product_name!r} stock={self.total_stock}>"
