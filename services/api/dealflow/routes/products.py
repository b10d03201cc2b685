"""Storefront product search.

GET /v1/products/search?q=... -> in-stock products with their deal price.
Queries shorter than two characters return an empty list.
"""

from fastapi import APIRouter, Depends, Query

from dealflow.container import Services, get_services
from dealflow.schemas.deal import ProductHit, ProductSearchResponse

router = APIRouter()


@router.get("/search", response_model=ProductSearchResponse, response_model_by_alias=True)
async def search_products(
    q: str = Query(default="", max_length=100, description="Name, brand or model fragment"),
    limit: int = Query(default=10, ge=1, le=50),
    services: Services = Depends(get_services),
) -> ProductSearchResponse:
    if services.catalog is None:
        return ProductSearchResponse(products=[])

    markup = services.lifecycle.policy.markup_fraction
    hits = await services.catalog.search_products(q, markup, limit=limit)
    return ProductSearchResponse(
        products=[
            ProductHit(
                id=hit.product.id,
                name=hit.product.name,
                brand=hit.product.brand,
                model=hit.product.model,
                stock=hit.product.stock,
                selling_price=hit.product.selling_price,
                deal_price=hit.deal_price,
            )
            for hit in hits
        ]
    )
