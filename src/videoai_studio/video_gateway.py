"""Image-to-video submissions on the fal.ai queue."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from . import fal_queue
from .errors import GenerationError, ValidationError
from .fal_queue import JobHandle
from .media import (
    MediaReference,
    UrlMedia,
    load_media_bytes,
    normalize_prompt,
    parse_media_reference,
    snap_duration,
    to_data_uri,
)
from .models import Scene
from .styles import describe_style

logger = logging.getLogger(__name__)


def video_model() -> str:
    return os.getenv("FAL_VIDEO_MODEL", "fal-ai/minimax/hailuo-02/standard/image-to-video")


def build_video_prompt(scene: Scene, style_id: str | None = None, reference_prompt: str | None = None) -> str:
    """Compose the motion prompt for ``scene`` from its visual and narration."""

    parts = [
        f"Visual style reference: {describe_style(style_id)}",
        f"Scene focus: {scene.visual}",
        f"Narration: {scene.narration}",
        f"Reference prompt: {reference_prompt}" if reference_prompt else "",
        "Translate any non-English content into fluent English before synthesis.",
    ]
    return normalize_prompt(" ".join(part for part in parts if part)) or normalize_prompt(scene.narration)


def inline_image(image_url: str) -> str:
    """Download the seed image and return it as a data URI.

    The provider needs a self-contained payload; a failed download is final.
    """

    content, content_type = load_media_bytes(UrlMedia(image_url), provider="source-image")
    if not content_type.startswith("image/"):
        content_type = "image/png"
    return to_data_uri(content, content_type)


def submit_video(
    image_url: str | None,
    prompt: str | None,
    *,
    duration: Any = None,
    prompt_optimizer: bool | None = None,
) -> JobHandle:
    if not isinstance(image_url, str) or not image_url.strip():
        raise ValidationError("imageUrl is required")
    final_prompt = normalize_prompt(prompt)
    if not final_prompt:
        raise ValidationError("The video prompt is empty")

    arguments: dict[str, Any] = {
        "prompt": final_prompt,
        "image_url": inline_image(image_url.strip()),
    }
    snapped = snap_duration(duration)
    if snapped is not None:
        arguments["duration"] = str(snapped)
    if prompt_optimizer is not None:
        arguments["prompt_optimizer"] = bool(prompt_optimizer)

    logger.info(
        "Submitting video (duration %s, optimizer %s, %d chars)",
        snapped,
        prompt_optimizer,
        len(final_prompt),
    )
    return fal_queue.submit(video_model(), arguments)


def video_reference(result: Mapping[str, Any]) -> MediaReference:
    """Locate the generated video in a provider result."""

    for key in ("video", "video_base64", "output", "data"):
        if key in result:
            value = result[key]
            if isinstance(value, list) and value:
                value = value[0]
            reference = parse_media_reference(value)
            if reference is not None:
                return reference
    raise GenerationError("The provider returned no video", provider=fal_queue.PROVIDER)
