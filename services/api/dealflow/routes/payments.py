"""Gateway callback endpoint.

POST /v1/payments/notify (form-encoded ITN)

Always answers 200 "OK" so the gateway stops retrying; failures are kept
as payment incidents instead. A body without m_payment_id is the one case
answered with 400.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from dealflow.container import Services, get_services
from dealflow.errors import MalformedNotification

router = APIRouter()


def source_ip(request: Request, trusted_hops: int = 0) -> str:
    """Caller address as seen by the outermost trusted proxy.

    Each trusted proxy appends the peer it saw to X-Forwarded-For, so only
    the last ``trusted_hops`` hops of the chain are believed. Entries to
    the left of that were written by the caller and are ignored.
    """
    peer = request.client.host if request.client else ""
    if trusted_hops <= 0:
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    chain = [hop.strip() for hop in forwarded.split(",") if hop.strip()] + [peer]
    return chain[max(len(chain) - 1 - trusted_hops, 0)]


@router.post("/notify", response_class=PlainTextResponse)
async def payment_notify(
    request: Request,
    services: Services = Depends(get_services),
) -> PlainTextResponse:
    form = await request.form()
    fields = {key: str(value) for key, value in form.items()}
    hops = services.notifications.verifier.config.trusted_proxy_hops
    try:
        await services.notifications.handle(fields, source_ip(request, hops))
    except MalformedNotification as e:
        return PlainTextResponse(e.message, status_code=e.status_code)
    return PlainTextResponse("OK")
