"""PostgreSQL deal tier.

The durable, authoritative tier of the deal store. Conditional status
changes are a single `UPDATE ... WHERE token = :t AND status IN (...)
RETURNING`, so two concurrent ITNs for the same deal cannot both win.
"""

from dataclasses import asdict
import json
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from dealflow.domain import BuyerContact, Deal, DealStatus, DeliveryAddress, PaymentIncident
from dealflow.errors import StoreUnavailable
from dealflow.models import DealRecord, PaymentIncidentRecord
from dealflow.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")

# Deal attribute -> column name
_COLUMN_FOR_FIELD = {
    "token": "token",
    "product_ref": "product_id",
    "product_name": "product_name",
    "product_sku": "product_sku",
    "cost_basis": "cost_price",
    "markup_fraction": "markup_fraction",
    "offer_price": "offer_price",
    "quantity": "quantity",
    "shipping_fee": "shipping_fee",
    "status": "status",
    "expiry": "expiry",
    "version": "version",
    "buyer_email": "customer_email",
    "buyer_phone": "customer_phone",
    "buyer": "buyer_json",
    "delivery_address": "address_json",
    "external_payment_ref": "pf_payment_id",
    "downstream_order_ref": "order_ref",
    "created_at": "created_at",
    "updated_at": "updated_at",
}


def _column_value(field_name: str, value: Any) -> Any:
    if field_name == "status":
        return DealStatus(value).value
    if field_name in ("buyer", "delivery_address"):
        return json.dumps(asdict(value)) if value is not None else None
    return value


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    return {_COLUMN_FOR_FIELD[k]: _column_value(k, v) for k, v in values.items()}


def _to_deal(row: DealRecord) -> Deal:
    return Deal(
        token=row.token,
        product_ref=row.product_id,
        product_name=row.product_name,
        product_sku=row.product_sku,
        cost_basis=row.cost_price,
        markup_fraction=row.markup_fraction,
        offer_price=row.offer_price,
        quantity=row.quantity,
        shipping_fee=row.shipping_fee,
        status=DealStatus(row.status),
        expiry=row.expiry,
        version=row.version,
        buyer_email=row.customer_email,
        buyer_phone=row.customer_phone,
        buyer=BuyerContact(**json.loads(row.buyer_json)) if row.buyer_json else None,
        delivery_address=DeliveryAddress(**json.loads(row.address_json)) if row.address_json else None,
        external_payment_ref=row.pf_payment_id,
        downstream_order_ref=row.order_ref,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _deal_columns(deal: Deal) -> dict[str, Any]:
    return _to_columns({name: getattr(deal, name) for name in _COLUMN_FOR_FIELD})


class PostgresDealBackend:
    """Deal tier backed by the `deals` table."""

    name = "postgres"

    async def insert(self, deal: Deal) -> bool:
        stmt = (
            pg_insert(DealRecord)
            .values(**_deal_columns(deal))
            .on_conflict_do_nothing(index_elements=["token"])
            .returning(DealRecord.id)
        )
        try:
            async with get_session() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none() is not None
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e

    async def fetch(self, token: str) -> Deal | None:
        try:
            async with get_session() as session:
                result = await session.execute(select(DealRecord).where(DealRecord.token == token))
                row = result.scalar_one_or_none()
                return _to_deal(row) if row else None
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e

    async def put(self, deal: Deal) -> None:
        values = _deal_columns(deal)
        stmt = pg_insert(DealRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["token"],
            set_={k: v for k, v in values.items() if k not in ("token", "created_at")},
        )
        try:
            async with get_session() as session:
                await session.execute(stmt)
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e

    async def compare_and_set(
        self,
        token: str,
        expected: frozenset[DealStatus],
        changes: dict[str, Any],
    ) -> Deal | None:
        stmt = (
            update(DealRecord)
            .where(DealRecord.token == token)
            .where(DealRecord.status.in_([s.value for s in expected]))
            .values(**_to_columns(changes), version=DealRecord.version + 1)
            .returning(DealRecord)
            .execution_options(synchronize_session=False)
        )
        try:
            async with get_session() as session:
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
                return _to_deal(row) if row else None
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e

    async def add_incident(self, incident: PaymentIncident) -> None:
        try:
            async with get_session() as session:
                session.add(
                    PaymentIncidentRecord(
                        token=incident.token,
                        kind=incident.kind,
                        message=incident.message,
                        detail_json=json.dumps(incident.detail, default=str) if incident.detail else None,
                        created_at=incident.created_at,
                    )
                )
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e
