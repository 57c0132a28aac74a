"""Pydantic models for task service responses."""

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Standard error body returned by the task service."""

    error: str
    code: str
    details: list[str] = []


class PendingSync(BaseModel):
    """Write accepted by the server but not yet propagated to Notion."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    pending_sync: bool = Field(True, alias="_pendingSync")
    id: str | None = None


class ErrorCodes:
    """Error code constants."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
