"""Deal endpoints.

POST /v1/deals                 -> price a product into a pending deal
GET  /v1/deals/{token}         -> deal projection (410 once expired)
POST /v1/deals/{token}/pay     -> accept with buyer details, return the
                                  auto-submitting gateway form

Errors are raised as DealflowError and rendered by the app-level handler.
"""

import logging

from fastapi import APIRouter, Depends, Path
from fastapi.responses import HTMLResponse

from dealflow.container import Services, get_services
from dealflow.domain import DealStatus
from dealflow.errors import DealExpired
from dealflow.schemas.common import error_responses
from dealflow.schemas.deal import CreateDealRequest, DealResponse, PayDealRequest
from dealflow.services.payment_request import render_form

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

TokenPath = Path(description="Deal token", min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9-]+$")


@router.post(
    "",
    response_model=DealResponse,
    response_model_by_alias=True,
    status_code=201,
    responses=error_responses(400, 404, 409),
)
async def create_deal(
    request: CreateDealRequest,
    services: Services = Depends(get_services),
) -> DealResponse:
    """Create a time-limited deal for a catalog product."""
    deal = await services.lifecycle.create_deal(
        request.product_id,
        quantity=request.quantity,
        buyer_email=request.email,
        buyer_phone=request.phone,
    )
    return DealResponse.from_deal(deal, services.lifecycle.clock())


@router.get(
    "/{token}",
    response_model=DealResponse,
    response_model_by_alias=True,
    responses=error_responses(404, 410),
)
async def get_deal(
    token: str = TokenPath,
    services: Services = Depends(get_services),
) -> DealResponse:
    """Return a deal; expired deals answer 410."""
    deal = await services.lifecycle.get_deal(token)
    if deal.status == DealStatus.EXPIRED:
        raise DealExpired("Deal has expired", {"token": token, "expiry": deal.expiry.isoformat()})
    return DealResponse.from_deal(deal, services.lifecycle.clock())


@router.post("/{token}/pay", response_class=HTMLResponse, responses=error_responses(400, 404, 409, 410))
async def pay_deal(
    request: PayDealRequest,
    token: str = TokenPath,
    services: Services = Depends(get_services),
) -> HTMLResponse:
    """Accept the deal and hand the browser over to the gateway."""
    deal = await services.lifecycle.accept(
        token,
        buyer=request.buyer.to_domain(),
        address=request.address.to_domain(),
        quantity=request.quantity,
    )
    payment = services.payments.build(deal)
    logger.info(f"Payment request built for deal {token}: amount={payment.fields['amount']}")
    return HTMLResponse(content=render_form(payment))
