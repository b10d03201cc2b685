#!/usr/bin/env python3
"""Seed database with a small demo catalog.

Creates:
- A handful of products with cost price, selling price and stock
- One product without a cost price (deal price falls back to 60% of the
  selling price + markup)

The script is idempotent: products are matched by SKU and left alone if
they already exist.

Usage:
    cd services/api
    python -m scripts.seed
"""

import asyncio
import os
import sys
from decimal import Decimal

# Add parent to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dealflow.models import Product
from dealflow.settings import get_settings

load_dotenv()

# ============================================================
# Product Definitions
# ============================================================
# SKUs follow the storefront export format "<product_id>_<locale>-<currency>";
# the downstream order system resolves them by exact match or base id.

PRODUCTS = [
    {
        "product_name": "Samsung Galaxy A15 128GB",
        "brand": "Samsung",
        "model": "SM-A155F",
        "sku": "5758_en-gb-ZAR",
        "cost_price": Decimal("2600.00"),
        "selling_price": Decimal("3999.00"),
        "total_stock": 25,
    },
    {
        "product_name": "JBL Tune 520BT Headphones",
        "brand": "JBL",
        "model": "T520BT",
        "sku": "6120_en-gb-ZAR",
        "cost_price": Decimal("650.00"),
        "selling_price": Decimal("999.00"),
        "total_stock": 40,
    },
    {
        "product_name": "Philips Air Fryer 4.1L",
        "brand": "Philips",
        "model": "HD9200",
        "sku": "7031_en-gb-ZAR",
        "cost_price": Decimal("1000.00"),
        "selling_price": Decimal("1599.00"),
        "total_stock": 5,
    },
    {
        "product_name": "Xiaomi Smart Band 8",
        "brand": "Xiaomi",
        "model": "M2239B1",
        "sku": "7412_en-gb-ZAR",
        "cost_price": None,
        "selling_price": Decimal("899.00"),
        "total_stock": 12,
    },
]


async def seed_database() -> None:
    """Seed the products table."""
    settings = get_settings()
    engine = create_async_engine(
        settings.async_database_url,
        echo=False,
        connect_args=settings.asyncpg_connect_args,
    )
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        print("Seeding database...")

        print("\nCreating products...")
        await seed_products(session)

        await session.commit()
        print("\nDatabase seeded successfully!")

    await engine.dispose()


async def seed_products(session: AsyncSession) -> dict[str, str]:
    """Insert demo products. Returns sku -> product id."""
    product_map: dict[str, str] = {}

    for p in PRODUCTS:
        result = await session.execute(select(Product).where(Product.sku == p["sku"]))
        existing = result.scalar_one_or_none()

        if existing:
            product_map[p["sku"]] = existing.id
            print(f"  - {p['product_name']} (exists)")
            continue

        product = Product(**p)
        session.add(product)
        await session.flush()
        product_map[p["sku"]] = product.id
        print(f"  + {p['product_name']} ({product.id}) stock={p['total_stock']}")

    return product_map


if __name__ == "__main__":
    asyncio.run(seed_database())
