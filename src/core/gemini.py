import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

# Import from centralized config
from src.config import (
    GEMINI_API_BASE,
    GEMINI_KEY,
    GEMINI_MODEL,
    GEMINI_TIMEOUT_SECONDS,
    logger,
)
from src.core.errors import (
    ConfigurationError,
    ContentPolicyError,
    GenerationIncompleteError,
    MalformedResponseError,
    UpstreamError,
)
from src.core.image_normalizer import NormalizedImage

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]

GENERATION_CONFIG = {
    "maxOutputTokens": 8192,
    "temperature": 0.4,
    "topP": 0.95,
    "topK": 40,
}

VERIFY_TIMEOUT_SECONDS = 10.0
MIN_BASE64_TEXT_LENGTH = 1000
BASE64_TEXT_PATTERN = re.compile(r"^[A-Za-z0-9+/]+=*$")
HTML_MARKERS = ("<!doctype", "<html")

SAFETY_FINISH_REASONS = {"SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT"}

SAFETY_MESSAGE = (
    "Content generation blocked by safety filters. "
    "Try simpler images with basic clothing."
)
RECITATION_MESSAGE = (
    "Content generation blocked due to potential copyright issues. "
    "Try images without logos or text."
)
AUTH_FAILED_MESSAGE = "API authentication failed. Please check your API key permissions."
QUOTA_MESSAGE = "API quota exceeded. Please try again later."
TIMEOUT_MESSAGE = "Request timed out. Please try with smaller images or try again later."
UNEXPECTED_ENDPOINT_MESSAGE = (
    "AI service returned an unexpected response. Please try again later."
)


# -------------------------
# Response extraction strategies
# -------------------------
ExtractionStrategy = Callable[[Dict[str, Any]], Optional[str]]


def _from_snake_case_inline_data(part: Dict[str, Any]) -> Optional[str]:
    inline = part.get("inline_data")
    if isinstance(inline, dict) and inline.get("data"):
        return inline["data"]
    return None


def _from_camel_case_inline_data(part: Dict[str, Any]) -> Optional[str]:
    inline = part.get("inlineData")
    if isinstance(inline, dict) and inline.get("data"):
        return inline["data"]
    return None


def _from_base64_text(part: Dict[str, Any]) -> Optional[str]:
    text = part.get("text")
    if not isinstance(text, str) or len(text) <= MIN_BASE64_TEXT_LENGTH:
        return None
    if BASE64_TEXT_PATTERN.match(text):
        return text
    return None


# Tried in order; each strategy scans every part before the next one runs
EXTRACTION_STRATEGIES: List[Tuple[str, ExtractionStrategy]] = [
    ("inline_data", _from_snake_case_inline_data),
    ("inlineData", _from_camel_case_inline_data),
    ("base64 text", _from_base64_text),
]


def _candidate_parts(api_result: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = api_result.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    if not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def extract_image_data(api_result: Dict[str, Any]) -> str:
    """
    Locate the generated image in a Gemini response.

    Returns:
        The base64 image data, exactly as sent by the API

    Raises:
        MalformedResponseError: If no strategy finds image data
    """
    parts = _candidate_parts(api_result)

    for name, strategy in EXTRACTION_STRATEGIES:
        for index, part in enumerate(parts):
            data = strategy(part)
            if data:
                logger.debug(f"Found image data in part {index} via {name}")
                return data

    logger.error(
        "No image data found in any expected location",
        extra={
            "has_candidates": bool(api_result.get("candidates")),
            "parts_count": len(parts),
            "part_keys": [sorted(part.keys()) for part in parts][:5],
        },
    )
    raise MalformedResponseError("Invalid response from Gemini API - no image data found")


def check_finish_reason(api_result: Dict[str, Any]) -> None:
    """Raise a classified error when the candidate did not finish successfully."""

    candidates = api_result.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = api_result.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block_reason:
            raise ContentPolicyError(
                f"Prompt blocked by Gemini: {block_reason}",
                reason="safety",
                public_message=SAFETY_MESSAGE,
            )
        return

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    finish_reason = candidate.get("finishReason")
    if not finish_reason or finish_reason == "STOP":
        return

    logger.warning(f"Gemini finish reason: {finish_reason}")

    if finish_reason in SAFETY_FINISH_REASONS:
        raise ContentPolicyError(
            f"Content generation blocked by safety filters ({finish_reason})",
            reason="safety",
            public_message=SAFETY_MESSAGE,
        )
    if finish_reason == "RECITATION":
        raise ContentPolicyError(
            "Content generation blocked due to potential copyright issues",
            reason="recitation",
            public_message=RECITATION_MESSAGE,
        )
    raise GenerationIncompleteError(
        f"Content generation failed: {finish_reason}", finish_reason=finish_reason
    )


def _looks_like_html(body: str) -> bool:
    return body.lstrip().lower().startswith(HTML_MARKERS)


def _parse_error_message(body: str) -> Optional[str]:
    try:
        payload = json.loads(body)
    except ValueError:
        logger.debug("Could not parse error response as JSON")
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return None


def _public_message_for_status(status_code: int) -> Optional[str]:
    if status_code in (401, 403):
        return AUTH_FAILED_MESSAGE
    if status_code == 429:
        return QUOTA_MESSAGE
    return None


def raise_for_error_response(response: httpx.Response) -> None:
    """Classify a non-2xx Gemini response and raise the matching error."""

    status_code = response.status_code
    body = response.text
    logger.error(f"Gemini API error ({status_code}): {body[:500]}")

    public_message = _public_message_for_status(status_code)

    if _looks_like_html(body):
        raise UpstreamError(
            "API endpoint returned HTML page - model may not be available "
            "or endpoint is incorrect",
            public_message=public_message or UNEXPECTED_ENDPOINT_MESSAGE,
            upstream_status=status_code,
            unexpected_endpoint=True,
        )

    detail = _parse_error_message(body)
    if detail:
        if status_code in (400, 401, 403) and "api key" in detail.lower():
            raise ConfigurationError(f"Gemini rejected the configured API key: {detail}")
        raise UpstreamError(
            f"API error: {detail}",
            public_message=public_message or f"AI service error: {detail[:100]}",
            upstream_status=status_code,
        )

    raise UpstreamError(
        f"API error: {status_code} - {body[:100]}",
        public_message=public_message or f"AI service error: {status_code}",
        upstream_status=status_code,
    )


@dataclass(slots=True)
class ApiKeyStatus:
    """Result of a successful credential check against the models listing."""

    models: List[str] = field(default_factory=list)
    image_models: List[str] = field(default_factory=list)
    models_count: int = 0


class GeminiClient:
    """Thin async client for the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = GEMINI_KEY,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_API_BASE,
        timeout: float = GEMINI_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def require_credentials(self) -> None:
        if not self.api_key:
            logger.error("GEMINI_KEY not configured")
            raise ConfigurationError("API key not configured")

    @staticmethod
    def build_payload(
        person: NormalizedImage, garment: NormalizedImage, prompt: str
    ) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": person.mime_type,
                                "data": person.data_b64,
                            }
                        },
                        {
                            "inline_data": {
                                "mime_type": garment.mime_type,
                                "data": garment.data_b64,
                            }
                        },
                        {"text": prompt},
                    ]
                }
            ],
            "safetySettings": SAFETY_SETTINGS,
            "generationConfig": GENERATION_CONFIG,
        }

    async def generate(
        self,
        person: NormalizedImage,
        garment: NormalizedImage,
        prompt: str,
        request_id: Optional[str] = None,
    ) -> str:
        """
        Generate a try-on image from a person and a garment image.

        Args:
            person: Normalized person image
            garment: Normalized garment image
            prompt: Instruction text sent after both images
            request_id: Correlation id for logs

        Returns:
            Base64 image data of the generated result

        Raises:
            ConfigurationError: If no API key is configured or Gemini rejects it
            UpstreamError: On transport failures, timeouts and non-2xx responses
            ContentPolicyError: If generation was blocked for safety or recitation
            GenerationIncompleteError: If generation stopped for another reason
            MalformedResponseError: If the response carries no image data
        """
        self.require_credentials()

        log_context = {"request_id": request_id, "model": self.model}
        logger.info(
            "Calling Gemini generateContent",
            extra={
                **log_context,
                "person_mime": person.mime_type,
                "person_bytes": round(len(person.data_b64) * 0.75),
                "garment_mime": garment.mime_type,
                "garment_bytes": round(len(garment.data_b64) * 0.75),
            },
        )

        payload = self.build_payload(person, garment, prompt)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.generate_url,
                    params={"key": self.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise UpstreamError(
                f"Gemini API request timed out after {self.timeout}s",
                public_message=TIMEOUT_MESSAGE,
            ) from exc
        except httpx.RequestError as exc:
            # str(exc) may echo the request URL, which carries the key
            raise UpstreamError(
                f"Network error calling Gemini API: {type(exc).__name__}",
                public_message="Could not connect to AI service. Please try again later.",
            ) from exc

        logger.info(
            f"Gemini API response status: {response.status_code}", extra=log_context
        )

        if not response.is_success:
            raise_for_error_response(response)

        try:
            api_result = response.json()
        except ValueError as exc:
            body = response.text
            logger.error(f"Failed to parse JSON response: {body[:500]}", extra=log_context)
            if _looks_like_html(body):
                raise UpstreamError(
                    "API returned HTML page instead of JSON - model endpoint may be incorrect",
                    public_message=UNEXPECTED_ENDPOINT_MESSAGE,
                    upstream_status=response.status_code,
                    unexpected_endpoint=True,
                ) from exc
            raise UpstreamError(
                "API returned invalid JSON response",
                upstream_status=response.status_code,
            ) from exc

        if not isinstance(api_result, dict):
            raise MalformedResponseError("Gemini API returned a non-object JSON body")

        if api_result.get("error"):
            raise UpstreamError(
                f"API error in successful response: {str(api_result['error'])[:200]}",
                upstream_status=response.status_code,
            )

        check_finish_reason(api_result)
        result_base64 = extract_image_data(api_result)

        logger.info(
            f"Successfully received result image, size: {round(len(result_base64) * 0.75)} bytes",
            extra=log_context,
        )
        return result_base64

    async def verify_api_key(self) -> ApiKeyStatus:
        """Check the configured key against the models listing endpoint."""

        self.require_credentials()
        if not self.api_key.startswith("AIzaSy") or len(self.api_key) != 39:
            raise ConfigurationError(
                "Invalid API key format", public_message="Invalid API key format"
            )

        try:
            async with httpx.AsyncClient(
                timeout=VERIFY_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/models", params={"key": self.api_key}
                )
        except httpx.RequestError as exc:
            logger.error(f"API key test error: {type(exc).__name__}")
            raise UpstreamError(
                "Could not connect to Gemini API",
                public_message="Could not connect to Gemini API",
            ) from exc

        if response.status_code in (401, 403):
            logger.error(f"API key test failed: {response.status_code}")
            raise UpstreamError(
                f"API key test failed: {response.status_code}",
                public_message="API key is invalid or lacks permissions",
                upstream_status=response.status_code,
            )
        if not response.is_success:
            logger.error(f"API key test failed: {response.status_code}")
            raise UpstreamError(
                f"API test failed: {response.status_code}",
                public_message=f"API test failed: {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            listing = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Models listing was not valid JSON") from exc

        models = listing.get("models") if isinstance(listing, dict) else None
        names = [
            model["name"]
            for model in (models or [])
            if isinstance(model, dict) and model.get("name")
        ]
        image_models = [
            name
            for name in names
            if "image" in name or "vision" in name or "generate" in name
        ]
        return ApiKeyStatus(
            models=names[:10],
            image_models=image_models,
            models_count=len(models or []),
        )


__all__ = [
    "GeminiClient",
    "ApiKeyStatus",
    "EXTRACTION_STRATEGIES",
    "extract_image_data",
    "check_finish_reason",
    "raise_for_error_response",
]
