"""Text-to-image submissions on the fal.ai queue."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from . import fal_queue
from .errors import GenerationError, ValidationError
from .fal_queue import JobHandle
from .media import normalize_prompt, parse_media_reference, UrlMedia
from .styles import describe_style

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "9:16"

STYLED_PROMPT = (
    "Create a highly dynamic {aspect_ratio} portrait illustration ready for animation.\n\n"
    "STYLE FOCUS: {style}\n\n"
    "INSTRUCTIONS:\n"
    "- Emphasize cinematic lighting, believable anatomy, and motion-friendly silhouettes.\n"
    "- Add environmental depth cues that support parallax for animation.\n\n"
    "SCENE TO ILLUSTRATE:\n{prompt}"
)


def image_model() -> str:
    return os.getenv("FAL_IMAGE_MODEL", "fal-ai/minimax/image-01")


def build_prompt(prompt: str | None, style_id: str | None = None, aspect_ratio: str = DEFAULT_ASPECT_RATIO) -> str:
    """Return the provider-ready prompt, styled when ``style_id`` is given."""

    text = prompt or ""
    if style_id and text.strip():
        text = STYLED_PROMPT.format(
            aspect_ratio=aspect_ratio, style=describe_style(style_id), prompt=text.strip()
        )
    normalized = normalize_prompt(text)
    if not normalized:
        raise ValidationError("The image prompt is empty")
    return normalized


def submit_image(
    prompt: str | None,
    scene_title: str | None = None,
    *,
    style_id: str | None = None,
    num_images: int = 1,
    aspect_ratio: str | None = None,
) -> JobHandle:
    """Queue an image generation on the fal.ai queue."""

    ratio = aspect_ratio or DEFAULT_ASPECT_RATIO
    final_prompt = build_prompt(prompt, style_id, ratio)
    logger.info(
        "Submitting image for scene %r (style %s, %d chars)",
        scene_title or "-",
        style_id or "none",
        len(final_prompt),
    )
    handle = fal_queue.submit(
        image_model(),
        {
            "prompt": final_prompt,
            "aspect_ratio": ratio,
            "num_images": max(1, min(int(num_images or 1), 4)),
        },
    )
    return handle


def image_urls(result: Mapping[str, Any]) -> list[str]:
    """Collect the image URLs of a finished text-to-image request."""

    images = result.get("images")
    if not isinstance(images, list):
        images = [result.get("image")] if result.get("image") else []
    urls = []
    for item in images:
        reference = parse_media_reference(item)
        if isinstance(reference, UrlMedia):
            urls.append(reference.url)
    if not urls:
        raise GenerationError("The provider returned no image", provider=fal_queue.PROVIDER)
    return urls
