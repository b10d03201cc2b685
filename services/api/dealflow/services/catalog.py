"""Catalog collaborator.

The deal flow only needs three things from the catalog:
- find_active_product(id): pricing + stock snapshot for deal creation/acceptance
- decrement_stock(id, amount): non-transactional decrement on payment (clamped at 0)
- search_products(query): storefront search with the current deal price

Stock is decremented directly, without reservation: two deals for the same
low-stock product can both pass their acceptance check. That race is accepted.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Protocol

from sqlalchemy import func, or_, select, update

from dealflow.domain import CatalogProduct, compute_offer_price
from dealflow.errors import NotFound, ProductUnavailable
from dealflow.models import Product
from dealflow.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")

MIN_QUERY_LENGTH = 2


class Catalog(Protocol):
    async def find_active_product(self, product_id: str) -> CatalogProduct:
        ...

    async def decrement_stock(self, product_id: str, amount: int) -> int:
        ...


@dataclass(frozen=True)
class ProductSearchHit:
    product: CatalogProduct
    deal_price: Decimal | None


def _to_catalog_product(row: Product) -> CatalogProduct:
    return CatalogProduct(
        id=row.id,
        name=row.product_name,
        stock=row.total_stock,
        base_cost=row.cost_price,
        selling_price=row.selling_price,
        sku=row.sku,
        brand=row.brand,
        model=row.model,
        active=row.active,
    )


class SqlCatalog:
    """Catalog backed by the `products` table."""

    async def find_active_product(self, product_id: str) -> CatalogProduct:
        """Get a product that can currently be offered.

        Raises:
            NotFound: Unknown product id.
            ProductUnavailable: Product inactive.
        """
        async with get_session() as session:
            row = await session.get(Product, product_id)
            if row is None:
                raise NotFound("Product not found", {"product_id": product_id})
            if not row.active:
                raise ProductUnavailable("Product is not active", {"product_id": product_id})
            return _to_catalog_product(row)

    async def decrement_stock(self, product_id: str, amount: int) -> int:
        """Reduce stock by `amount`, never below zero. Returns the new stock."""
        async with get_session() as session:
            result = await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(total_stock=func.greatest(Product.total_stock - amount, 0))
                .returning(Product.total_stock)
            )
            new_stock = result.scalar_one_or_none()
        if new_stock is None:
            raise NotFound("Product not found", {"product_id": product_id})
        logger.info(f"Stock reduced for product {product_id} by {amount} -> {new_stock}")
        return new_stock

    async def search_products(
        self,
        query: str,
        markup_fraction: Decimal,
        limit: int = 10,
    ) -> list[ProductSearchHit]:
        """Case-insensitive search over name, brand and model (in-stock only)."""
        query = query.strip()
        if len(query) < MIN_QUERY_LENGTH:
            return []

        pattern = f"%{query}%"
        async with get_session() as session:
            result = await session.execute(
                select(Product)
                .where(Product.total_stock > 0)
                .where(Product.active.is_(True))
                .where(
                    or_(
                        Product.product_name.ilike(pattern),
                        Product.brand.ilike(pattern),
                        Product.model.ilike(pattern),
                    )
                )
                .order_by(Product.product_name)
                .limit(limit)
            )
            rows = result.scalars().all()

        logger.info(f"Search results for {query!r}: {len(rows)} products found")
        return [
            ProductSearchHit(
                product=_to_catalog_product(row),
                deal_price=compute_offer_price(row.cost_price, markup_fraction) if row.cost_price else None,
            )
            for row in rows
        ]
