"""Error envelope shared by every JSON endpoint.

Format: { "error": { "code": str, "message": str, "detail": object } }
"""

from typing import Any

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Stable error code (NOT_FOUND, DEAL_EXPIRED, ...) plus context."""

    code: str
    message: str
    detail: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


def error_responses(*status_codes: int) -> dict[int | str, dict[str, Any]]:
    """OpenAPI `responses=` entry documenting the error envelope per status."""
    return {code: {"model": ErrorResponse} for code in status_codes}
