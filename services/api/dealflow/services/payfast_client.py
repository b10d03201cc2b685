"""PayFast server-to-server validation client.

After an ITN passes the local checks, its fields are posted back to the
gateway's validate endpoint. The gateway answers with the plain-text word
VALID when it really sent that notification. Any other reply, a transport
error or a timeout is a rejection; the caller decides what to do with it.
"""

import logging
from collections.abc import Mapping

import httpx

from dealflow.errors import GatewayRejected
from dealflow.services.signature import SIGNATURE_FIELD
from dealflow.settings import get_settings

logger = logging.getLogger("uvicorn.error")

VALID_REPLY = "VALID"


class PayFastClient:
    """Client for the PayFast ITN validation endpoint."""

    def __init__(
        self,
        validate_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.validate_url = validate_url or settings.payfast_validate_url
        self.timeout = timeout or settings.payfast_validate_timeout
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def validate(self, fields: Mapping[str, str]) -> None:
        """Echo ITN fields back to the gateway.

        Raises:
            GatewayRejected: Reply was not VALID, or the request failed/timed out.
        """
        echoed = {k: v for k, v in fields.items() if k != SIGNATURE_FIELD}
        client = await self._get_client()
        try:
            resp = await client.post(self.validate_url, data=echoed, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise GatewayRejected("PayFast validation timed out", {"timeout": self.timeout}) from e
        except httpx.HTTPError as e:
            raise GatewayRejected(f"PayFast validation request failed: {e}") from e

        reply = resp.text.strip()
        if resp.status_code != 200 or reply != VALID_REPLY:
            logger.error(f"PayFast validation failed: {resp.status_code} - {reply[:200]}")
            raise GatewayRejected(
                f"PayFast validation failed: {reply[:100]}",
                {"status": resp.status_code},
            )
