"""Error taxonomy for the deal checkout flow.

Every error carries a stable machine-readable code and the HTTP status the
user-facing routes answer with. The notification route never surfaces these
to the gateway; it records them as payment incidents instead.
"""

from typing import Any


class DealflowError(Exception):
    """Base class for all domain errors."""

    code: str = "DEALFLOW_ERROR"
    status_code: int = 400

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class NotFound(DealflowError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(DealflowError):
    code = "CONFLICT"
    status_code = 409


class InvalidTransition(DealflowError):
    code = "INVALID_TRANSITION"
    status_code = 409


class DealExpired(DealflowError):
    code = "DEAL_EXPIRED"
    status_code = 410


class InsufficientStock(DealflowError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409


class ProductUnavailable(DealflowError):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 400


class InvalidRequest(DealflowError):
    code = "INVALID_REQUEST"
    status_code = 422


class OriginRejected(DealflowError):
    code = "ORIGIN_REJECTED"
    status_code = 403


class SignatureMismatch(DealflowError):
    code = "SIGNATURE_MISMATCH"
    status_code = 400


class AmountMismatch(DealflowError):
    code = "AMOUNT_MISMATCH"
    status_code = 400


class GatewayRejected(DealflowError):
    code = "GATEWAY_REJECTED"
    status_code = 502


class IntegrationFailure(DealflowError):
    code = "INTEGRATION_FAILURE"
    status_code = 502


class MalformedNotification(DealflowError):
    code = "MALFORMED_NOTIFICATION"
    status_code = 400


class StoreUnavailable(RuntimeError):
    """A storage tier could not be reached."""
