"""Common schemas for the OpsFlow API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaginationParams(BaseModel):
    """Page through listings; ``per_page`` is capped at 100."""
    page: int = Field(1, ge=1)
    per_page: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def limit(self) -> int:
        return self.per_page


class ErrorResponse(BaseModel):
    """
    Body of every engine error.

    ``error`` is the stable error code; the remaining keys are the details
    the error carries (step order, conflicting rule ids, ...).
    """
    model_config = ConfigDict(extra="allow")

    error: str
    detail: Optional[str] = None


# Documented on every /api router
ENGINE_ERROR_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Acting user is not a pending approver"},
    404: {"model": ErrorResponse, "description": "Chain, template or delegation not found"},
    409: {"model": ErrorResponse, "description": "Conflicting or out-of-order change"},
    503: {"model": ErrorResponse, "description": "Role directory or database unavailable"},
}
