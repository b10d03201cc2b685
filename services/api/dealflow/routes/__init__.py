"""API routes."""

from fastapi import APIRouter

from dealflow.routes import deals, payments, products

api_router = APIRouter()

# Storefront search
api_router.include_router(products.router, prefix="/v1/products", tags=["products"])

# Deal creation, lookup and checkout
api_router.include_router(deals.router, prefix="/v1/deals", tags=["deals"])

# Gateway callbacks (ITN)
api_router.include_router(payments.router, prefix="/v1/payments", tags=["payments"])
