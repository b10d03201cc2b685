"""PaymentIncident model.

Failures swallowed on the ITN path (and downstream order failures) are kept
here so an operator can reconcile payments by hand.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from dealflow.stores.postgres import Base


class PaymentIncidentRecord(Base):
    """Operator reconciliation entry."""

    __tablename__ = "payment_incidents"

    id: Mapped[int] = mapped_column(primary_key=True)
    token: Mapped[str | None] = mapped_column(String(36), index=True)
    kind: Mapped[str] = mapped_column(String(50), index=True)  # SIGNATURE_MISMATCH, INTEGRATION_FAILURE, ...
    message: Mapped[str] = mapped_column(Text)
    detail_json: Mapped[str | None] = mapped_column(Text)
    resolved: Mapped[bool] = mapped_column(default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<PaymentIncident {self.kind} token={self.token}>"
