"""
Error taxonomy for the try-on pipeline.

Every component raises one of these instead of a bare ``Exception`` so the
router can map failures to HTTP responses in a single place. ``message`` is
for logs; ``public_message`` is what the caller sees and never carries
credentials or upstream bodies.
"""

from typing import Optional


class TryOnError(Exception):
    """Base class for classified try-on failures."""

    status_code: int = 500
    default_public_message: str = "An unexpected error occurred. Please try again."

    def __init__(self, message: str, public_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.public_message = public_message or self.default_public_message


class ValidationError(TryOnError):
    """Bad or missing input images/fields. Always client-caused."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message, public_message=message)

    def with_label(self, label: str) -> "ValidationError":
        """Return a copy prefixed with the role that failed (e.g. ``Person image``)."""
        return ValidationError(f"{label}: {self.message}")


class RateLimitDelay(TryOnError):
    """Soft per-identity threshold crossed; retry viable after ``retry_after`` seconds."""

    status_code = 429

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message, public_message=message)
        self.retry_after = retry_after


class RateLimitExceeded(TryOnError):
    """Hard per-identity or global ceiling reached; retry tomorrow."""

    status_code = 429

    def __init__(self, message: str) -> None:
        super().__init__(message, public_message=message)


class ConfigurationError(TryOnError):
    status_code = 500
    default_public_message = "Service configuration error. Please check API key."


class UpstreamError(TryOnError):
    """The provider answered with a failure status or an unusable body."""

    status_code = 502
    default_public_message = "AI service error. Please try again later."

    def __init__(
        self,
        message: str,
        public_message: Optional[str] = None,
        upstream_status: Optional[int] = None,
        unexpected_endpoint: bool = False,
    ) -> None:
        super().__init__(message, public_message=public_message)
        self.upstream_status = upstream_status
        self.unexpected_endpoint = unexpected_endpoint


class ContentPolicyError(TryOnError):
    """The provider refused to generate for safety or originality reasons."""

    status_code = 400
    default_public_message = (
        "Content could not be generated. Please try different images "
        "that comply with safety guidelines."
    )

    def __init__(
        self, message: str, reason: str, public_message: Optional[str] = None
    ) -> None:
        super().__init__(message, public_message=public_message)
        self.reason = reason


class MalformedResponseError(TryOnError):
    status_code = 502
    default_public_message = "AI service returned invalid response. Please try again."


class GenerationIncompleteError(TryOnError):
    """The provider stopped for a reason other than success or policy (e.g. MAX_TOKENS)."""

    status_code = 502
    default_public_message = "AI service could not finish the image. Please try again."

    def __init__(self, message: str, finish_reason: str) -> None:
        super().__init__(message)
        self.finish_reason = finish_reason


__all__ = [
    "TryOnError",
    "ValidationError",
    "RateLimitDelay",
    "RateLimitExceeded",
    "ConfigurationError",
    "UpstreamError",
    "ContentPolicyError",
    "MalformedResponseError",
    "GenerationIncompleteError",
]
