"""Service helpers used by the try-on router."""

from typing import Optional

from fastapi import UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from src.config import logger
from src.core.errors import (
    RateLimitDelay,
    RateLimitExceeded,
    TryOnError,
    ValidationError,
)
from src.core.gemini import GeminiClient
from src.core.image_normalizer import normalize_image
from src.core.prompt_templates import build_combine_prompt
from src.core.rate_limit import DELAY, REJECT, RateLimitDecision, RateLimiter

from .contexts import CombineContext, CombineResult, NormalizedPair
from .models import ErrorResponse, RateLimitErrorResponse
from .utils import read_upload

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


async def normalize_uploads(
    person: Optional[UploadFile],
    garment: Optional[UploadFile],
) -> NormalizedPair:
    """Require both images and normalize each, labelling failures by role."""

    if person is None or garment is None:
        raise ValidationError("Both person and garment images are required")

    normalized = []
    for upload, role, label in (
        (person, "person", "Person image"),
        (garment, "garment", "Garment image"),
    ):
        payload = await read_upload(upload, role)
        try:
            normalized.append(await run_in_threadpool(normalize_image, payload))
        except ValidationError as exc:
            raise exc.with_label(label) from exc

    return NormalizedPair(person=normalized[0], garment=normalized[1])


def admit_request(
    limiter: RateLimiter,
    identity: str,
    charge_now: bool,
) -> RateLimitDecision:
    """
    Gate a request through the rate limiter.

    With ``charge_now`` the request is recorded atomically with the check,
    so the quota is spent even if the provider call later fails.

    Raises:
        RateLimitDelay: Soft limit crossed and the delay window has not passed
        RateLimitExceeded: Hard or global limit reached
    """
    decision = limiter.try_acquire(identity) if charge_now else limiter.check(identity)

    if decision.outcome == DELAY:
        raise RateLimitDelay(
            decision.message or "Please wait before your next try-on.",
            retry_after=decision.retry_after_seconds or limiter.delay_seconds,
        )
    if decision.outcome == REJECT:
        raise RateLimitExceeded(decision.message or "Daily limit reached.")

    return decision


async def combine_images(
    *,
    context: CombineContext,
    person: Optional[UploadFile],
    garment: Optional[UploadFile],
    prompt: Optional[str],
    limiter: RateLimiter,
    client: GeminiClient,
    charge_failed_generations: bool = True,
) -> CombineResult:
    """Run normalization, admission and generation for one combine request."""

    images = await normalize_uploads(person, garment)

    logger.info(
        "Images normalized",
        extra={
            "request_id": context.request_id,
            "person_size": (images.person.width, images.person.height),
            "person_resized": images.person.resized,
            "garment_size": (images.garment.width, images.garment.height),
            "garment_resized": images.garment.resized,
        },
    )

    # No quota may be charged for a request that can never reach the provider
    client.require_credentials()

    decision = admit_request(limiter, context.identity, charge_failed_generations)

    prompt_to_use = build_combine_prompt(prompt)
    logger.info(
        f"Using prompt: {prompt_to_use[:100]}...",
        extra={"request_id": context.request_id, "custom_prompt": bool(prompt)},
    )

    result_base64 = await client.generate(
        images.person,
        images.garment,
        prompt_to_use,
        request_id=context.request_id,
    )

    if not charge_failed_generations:
        limiter.record(context.identity)

    remaining = decision.remaining_per_identity
    return CombineResult(
        image_base64=result_base64,
        remaining_calls=max(0, remaining - 1) if remaining is not None else None,
    )


def build_error_response(
    exc: Exception, request_id: Optional[str] = None
) -> JSONResponse:
    """Map a failure to its HTTP status and stable JSON error body."""

    log_context = {"request_id": request_id, "error_type": type(exc).__name__}

    if isinstance(exc, RateLimitDelay):
        logger.info("Request delayed by rate limiter", extra=log_context)
        body = RateLimitErrorResponse(
            error=exc.public_message, type="delay", retry_after=exc.retry_after
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=body.model_dump(by_alias=True, exclude_none=True),
            headers={"Retry-After": str(exc.retry_after)},
        )

    if isinstance(exc, RateLimitExceeded):
        logger.info("Request rejected by rate limiter", extra=log_context)
        body = RateLimitErrorResponse(error=exc.public_message, type="limit_reached")
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=body.model_dump(by_alias=True, exclude_none=True),
        )

    if isinstance(exc, TryOnError):
        if exc.status_code >= 500:
            logger.error(f"Request failed: {exc.message}", extra=log_context)
        else:
            logger.warning(f"Request rejected: {exc.message}", extra=log_context)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.public_message).model_dump(),
        )

    logger.error("Unexpected error in combine request", exc_info=exc, extra=log_context)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=GENERIC_ERROR_MESSAGE).model_dump(),
    )
