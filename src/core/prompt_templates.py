"""Prompt templates for the Gemini virtual try-on combine flow."""

from __future__ import annotations

from typing import Optional

DEFAULT_PROMPT = (
    "Blend these two images: Put the garment from the second image onto the person "
    "in the first image. Create a realistic virtual try-on by editing the person to "
    "wear the garment while maintaining their pose, face, and natural lighting. "
    "Generate the final edited image."
)

MAX_PROMPT_LENGTH = 2000


def build_combine_prompt(custom_prompt: Optional[str] = None) -> str:
    """Return the caller's prompt, or the default one when absent or blank."""

    cleaned = (custom_prompt or "").strip()
    if not cleaned:
        return DEFAULT_PROMPT
    return cleaned[:MAX_PROMPT_LENGTH]


__all__ = ["DEFAULT_PROMPT", "MAX_PROMPT_LENGTH", "build_combine_prompt"]
