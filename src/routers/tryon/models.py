"""Pydantic models used by the try-on router."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CombineResponse(BaseModel):
    """Response model for a successful combine request."""

    image: str = Field(..., description="Generated image as base64 (no data URI prefix)")


class ErrorResponse(BaseModel):
    """Generic error payload."""

    error: str


class RateLimitErrorResponse(BaseModel):
    """429 payload; ``retryAfter`` is only present for the delay case."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    type: str = Field(..., description="'delay' or 'limit_reached'")
    retry_after: Optional[int] = Field(None, alias="retryAfter")


class RateLimitStatsResponse(BaseModel):
    total_identities: int
    global_daily_count: int
    global_remaining: int


class RateLimitStatusResponse(BaseModel):
    """Rate limit status details for the requester."""

    allowed: bool
    outcome: str
    message: Optional[str] = None
    retry_after: Optional[int] = None
    remaining_calls: Optional[int] = None
    global_remaining: Optional[int] = None
    stats: RateLimitStatsResponse


class ApiKeyCheckResponse(BaseModel):
    status: str
    message: str
    available_models: List[str] = Field(default_factory=list)
    image_models: List[str] = Field(default_factory=list)
    models_count: int = 0
