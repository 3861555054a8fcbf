"""
Image ingestion and normalization.

Validates uploaded images and bounds their dimensions before they are
forwarded to Gemini. Images within bounds pass through byte-for-byte;
larger ones are downscaled to fit inside MAX_DIMENSION x MAX_DIMENSION.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from src.config import logger
from src.core.errors import ValidationError

MAX_FILE_SIZE = 4 * 1024 * 1024  # 4MB
MAX_DIMENSION = 1024
UNSUPPORTED_TYPES = ("image/webp",)

# Formats Pillow decodes but which we re-encode as something the API accepts
_SAVE_FORMAT_ALIASES = {"MPO": "JPEG", "JPEG": "JPEG", "PNG": "PNG", "GIF": "GIF"}

# Modes the PNG encoder writes as-is; others (CMYK, float) are converted first
_PNG_MODES = ("1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA")


@dataclass(slots=True)
class ImagePayload:
    """Raw upload for one role (person or garment), owned by a single request."""

    data: bytes
    content_type: str
    size: int
    role: str = "image"


@dataclass(slots=True)
class NormalizedImage:
    data_b64: str
    mime_type: str
    width: int
    height: int
    resized: bool = False


def validate_image(payload: ImagePayload) -> None:
    """Reject payloads by declared type and size before any decoding."""

    content_type = (payload.content_type or "").lower()
    if not content_type.startswith("image/"):
        raise ValidationError("File must be an image")

    if content_type in UNSUPPORTED_TYPES:
        raise ValidationError("WebP format not supported. Please use JPG or PNG.")

    if payload.size > MAX_FILE_SIZE or len(payload.data) > MAX_FILE_SIZE:
        raise ValidationError("Image too large. Maximum size is 4MB.")


def normalize_image(payload: ImagePayload) -> NormalizedImage:
    """
    Validate an uploaded image and bound its dimensions.

    Args:
        payload: Raw upload with its declared media type and size

    Returns:
        NormalizedImage with base64 data (no data URI prefix)

    Raises:
        ValidationError: If the payload is not an acceptable image
    """
    validate_image(payload)

    try:
        with Image.open(BytesIO(payload.data)) as image:
            width, height = image.size
            if width <= MAX_DIMENSION and height <= MAX_DIMENSION:
                return NormalizedImage(
                    data_b64=base64.b64encode(payload.data).decode("utf-8"),
                    mime_type=payload.content_type,
                    width=width,
                    height=height,
                )

            data, mime_type, new_size = _downscale(image)
    except Image.DecompressionBombError as exc:
        raise ValidationError("Image dimensions are too large") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning(
            "Could not decode uploaded image",
            extra={"role": payload.role, "error": str(exc)},
        )
        raise ValidationError("File must be a valid image") from exc

    logger.info(
        f"Resized {payload.role} image from {(width, height)} to {new_size}"
    )
    return NormalizedImage(
        data_b64=base64.b64encode(data).decode("utf-8"),
        mime_type=mime_type or payload.content_type,
        width=new_size[0],
        height=new_size[1],
        resized=True,
    )


def _downscale(image: Image.Image) -> Tuple[bytes, Optional[str], Tuple[int, int]]:
    save_format = _SAVE_FORMAT_ALIASES.get(image.format or "", "PNG")

    # Re-encoding drops EXIF, so bake the orientation into the pixels first
    working = ImageOps.exif_transpose(image)
    working.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.Resampling.LANCZOS)

    save_kwargs = {}
    if save_format == "JPEG":
        if working.mode not in ("RGB", "L"):
            working = working.convert("RGB")
        save_kwargs["quality"] = 90
    elif save_format == "PNG" and working.mode not in _PNG_MODES:
        if working.mode == "F":
            working = working.convert("L")
        else:
            working = working.convert("RGBA" if "A" in working.mode else "RGB")

    buffer = BytesIO()
    working.save(buffer, format=save_format, **save_kwargs)
    return buffer.getvalue(), Image.MIME.get(save_format), working.size


__all__ = [
    "ImagePayload",
    "NormalizedImage",
    "MAX_FILE_SIZE",
    "MAX_DIMENSION",
    "validate_image",
    "normalize_image",
]
