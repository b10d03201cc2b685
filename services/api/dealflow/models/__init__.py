"""SQLAlchemy ORM models.

Models represent database tables:
- products: Catalog items deals are priced from
- deals: Durable deal records (authoritative tier of the deal store)
- payment_incidents: Swallowed ITN/integration failures for reconciliation
"""

from dealflow.models.product import Product
from dealflow.models.deal import DealRecord
from dealflow.models.incident import PaymentIncidentRecord

__all__ = ["Product", "DealRecord", "PaymentIncidentRecord"]
