"""Deal model.

Durable record of a deal. The token doubles as the gateway's
m_payment_id; status changes go through conditional updates only.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from dealflow.stores.postgres import Base


class DealRecord(Base):
    """Persisted deal row."""

    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Public token (uuid4), gateway correlation id
    token: Mapped[str] = mapped_column(String(36), unique=True, index=True)

    # Product snapshot
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    product_name: Mapped[str] = mapped_column(String(300))
    product_sku: Mapped[str | None] = mapped_column(String(100))

    # Pricing (fixed at creation)
    cost_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    markup_fraction: Mapped[Decimal] = mapped_column(Numeric(6, 4))
    offer_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    quantity: Mapped[int] = mapped_column(default=1)
    shipping_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), index=True, default="pending")
    expiry: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    version: Mapped[int] = mapped_column(default=1)

    # Buyer (set once at acceptance)
    customer_email: Mapped[str | None] = mapped_column(String(320))
    customer_phone: Mapped[str | None] = mapped_column(String(50))
    buyer_json: Mapped[str | None] = mapped_column(Text)
    address_json: Mapped[str | None] = mapped_column(Text)

    # External references
    pf_payment_id: Mapped[str | None] = mapped_column(String(100))
    order_ref: Mapped[str | None] = mapped_column(String(100))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<DealRecord {self.token} {self.status}>"
