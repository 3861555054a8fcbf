"""FastAPI router for virtual try-on endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile

from src.config import logger
from src.core.gemini import GeminiClient
from src.core.rate_limit import RateLimiter

from .contexts import CombineContext
from .dependencies import (
    get_charge_failed_generations,
    get_generation_client,
    get_rate_limiter,
)
from .models import (
    ApiKeyCheckResponse,
    CombineResponse,
    ErrorResponse,
    RateLimitErrorResponse,
    RateLimitStatsResponse,
    RateLimitStatusResponse,
)
from .services import build_error_response, combine_images
from .utils import get_client_ip

router = APIRouter(prefix="/api/v1", tags=["Virtual Try-On"])


@router.post(
    "/combine",
    response_model=CombineResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": RateLimitErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def combine(
    request: Request,
    response: Response,
    person: Optional[UploadFile] = File(default=None, description="Person image"),
    garment: Optional[UploadFile] = File(default=None, description="Garment image"),
    prompt: Optional[str] = Form(default=None, description="Optional instruction text"),
    limiter: RateLimiter = Depends(get_rate_limiter),
    client: GeminiClient = Depends(get_generation_client),
    charge_failed_generations: bool = Depends(get_charge_failed_generations),
):
    """Combine a person image and a garment image into a try-on image."""

    context = CombineContext(
        request_id=uuid.uuid4().hex[:8],
        identity=get_client_ip(request),
    )
    logger.info(
        "Combine request received",
        extra={
            "request_id": context.request_id,
            "client_ip": context.identity,
            "person": person is not None,
            "garment": garment is not None,
            "prompt": bool(prompt),
        },
    )

    try:
        result = await combine_images(
            context=context,
            person=person,
            garment=garment,
            prompt=prompt,
            limiter=limiter,
            client=client,
            charge_failed_generations=charge_failed_generations,
        )
    except Exception as exc:
        logger.info(
            f"Request failed in {context.elapsed_ms()}ms",
            extra={"request_id": context.request_id},
        )
        return build_error_response(exc, context.request_id)

    if result.remaining_calls is not None:
        response.headers["X-RateLimit-Remaining"] = str(result.remaining_calls)

    logger.info(
        f"Request completed in {context.elapsed_ms()}ms",
        extra={"request_id": context.request_id},
    )
    return CombineResponse(image=result.image_base64)


@router.get("/ratelimit", response_model=RateLimitStatusResponse)
async def check_rate_limit_status(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitStatusResponse:
    """Report the caller's current rate limit decision without consuming quota."""

    client_ip = get_client_ip(request)
    decision = limiter.check(client_ip)
    stats = limiter.get_stats()

    logger.info(
        "Rate limit status check",
        extra={"client_ip": client_ip, "outcome": decision.outcome},
    )

    return RateLimitStatusResponse(
        allowed=decision.allowed,
        outcome=decision.outcome,
        message=decision.message,
        retry_after=decision.retry_after_seconds,
        remaining_calls=decision.remaining_per_identity,
        global_remaining=decision.remaining_global,
        stats=RateLimitStatsResponse(
            total_identities=stats.total_identities,
            global_daily_count=stats.global_daily_count,
            global_remaining=stats.global_remaining,
        ),
    )


@router.get(
    "/api-key/check",
    response_model=ApiKeyCheckResponse,
    responses={500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def check_api_key(
    client: GeminiClient = Depends(get_generation_client),
):
    """Verify the configured Gemini key by listing available models."""

    # Classified failures are mapped by the app-level TryOnError handler
    key_status = await client.verify_api_key()

    return ApiKeyCheckResponse(
        status="success",
        message="API key is valid",
        available_models=key_status.models,
        image_models=key_status.image_models,
        models_count=key_status.models_count,
    )


@router.get("/health")
async def health_check() -> dict:
    """Simple health check endpoint."""

    return {
        "status": "healthy",
        "service": "virtual-try-on-combine-api",
        "version": "1.0.0",
    }
