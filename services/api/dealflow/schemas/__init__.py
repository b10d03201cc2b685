"""Pydantic schemas for API request/response validation."""

from dealflow.schemas.common import ErrorDetail, ErrorResponse
from dealflow.schemas.deal import (
    AddressIn,
    BuyerIn,
    CreateDealRequest,
    DealResponse,
    PayDealRequest,
    ProductHit,
    ProductSearchResponse,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "AddressIn",
    "BuyerIn",
    "CreateDealRequest",
    "DealResponse",
    "PayDealRequest",
    "ProductHit",
    "ProductSearchResponse",
]
