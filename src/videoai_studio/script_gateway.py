"""LLM calls that turn a topic into a structured script and image prompts."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from time import monotonic
from typing import Any

import requests
from requests import exceptions as requests_exceptions

from .config import require_env
from .errors import GenerationError, ValidationError
from .fal_queue import error_detail
from .models import Scene, Script
from .styles import describe_style

logger = logging.getLogger(__name__)

PROVIDER = "openai"
REQUEST_TIMEOUT = 120
WORDS_PER_SECOND = 3.2
TARGET_SCENES = (16, 20)
TARGET_WORDS = (140, 260)

SCRIPT_SYSTEM_PROMPT = """You are an automatic short-video script generator.

VISUAL STYLE TO RESPECT: {style}

CRITICAL INSTRUCTIONS:
- Answer IMMEDIATELY with raw JSON, no Markdown and no surrounding text.
- Do not explain your reasoning.
- Durations are computed afterwards: do not provide them.
- Write the title, narration and descriptions in the language of the topic.

EXACT FORMAT:
{{
  "title": "...",
  "music": "...",
  "scenes": [
    {{
      "scene_number": 1,
      "title": "...",
      "visual": "concise visual description (22 words max)",
      "narration": "spoken sentence (8-16 words)",
      "audio_description": "sound ambience (10 words max)"
    }}
  ]
}}

RULES:
- Produce between 16 and 18 scenes.
- Short sentences, present tense.
- Simple cinematic tone. No text outside the JSON."""

SCRIPT_USER_PROMPT = """Topic: "{topic}"

Quick guidelines:
- Rhythmic, mysterious script with a surprising ending.
- Every scene must move the action or the revelation forward.
- Use simple, visual vocabulary.
- Output the final JSON directly."""

PROMPTS_SYSTEM_PROMPT = """You are an expert at writing prompts for AI image generation.

VISUAL STYLE TO RESPECT: {style}

Analyse a video script and write one detailed image prompt for each scene.
Every prompt must be in English, highly descriptive and optimised for image
generation. Answer ONLY with a raw JSON object, without Markdown."""

PROMPTS_USER_PROMPT = """Write EXACTLY one prompt for EVERY scene of this script.

Script:
{script}

- Consistent cinematic style, atmosphere, lighting and composition details.
- Prompts must match the visual description of each scene.

Mandatory JSON format:
{{
  "prompts": [
    {{"scene_number": 1, "scene_title": "Scene title", "prompt": "Detailed visual prompt in English"}}
  ]
}}"""


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` block found in ``text``.

    Braces inside JSON strings are ignored, so prose or code fences around
    the object do not matter.
    """

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    raise GenerationError("No JSON object found in the completion", provider=PROVIDER)


def _parse_object(text: str) -> dict[str, Any]:
    candidate = extract_json_object(text)
    try:
        parsed = json.loads(candidate)
    except ValueError as exc:
        raise GenerationError(
            f"Completion is not valid JSON: {exc}", provider=PROVIDER
        ) from exc
    if not isinstance(parsed, dict):
        raise GenerationError("Completion JSON is not an object", provider=PROVIDER)
    return parsed


def chat_completion(system_prompt: str, user_prompt: str) -> str:
    """Run one JSON-mode chat completion and return the message content."""

    api_key = require_env("OPENAI_API_KEY")
    base_url = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
    model = os.getenv("OPENAI_MODEL", "gpt-5-nano")

    started = monotonic()
    try:
        response = requests.post(
            f"{base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "response_format": {"type": "json_object"},
            },
            timeout=REQUEST_TIMEOUT,
        )
    except requests_exceptions.RequestException as exc:
        raise GenerationError(f"LLM request failed: {exc}", provider=PROVIDER) from exc

    logger.info(
        "LLM %s answered %s in %.0fms (request id %s)",
        model,
        response.status_code,
        (monotonic() - started) * 1000,
        response.headers.get("x-request-id", "-"),
    )

    if response.status_code == 429:
        raise GenerationError(
            "LLM rate limit reached, retry in a few moments",
            provider=PROVIDER,
            http_status=429,
            status_code=429,
            reason="rate_limited",
        )
    if response.status_code == 402:
        raise GenerationError(
            "LLM credits exhausted",
            provider=PROVIDER,
            http_status=402,
            status_code=402,
            reason="credits_exhausted",
        )
    if not response.ok:
        try:
            detail = error_detail(response.json())
        except ValueError:
            detail = response.text.strip()
        raise GenerationError(
            f"LLM error {response.status_code}: {detail or 'no detail'}",
            provider=PROVIDER,
            http_status=response.status_code,
        )

    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise GenerationError("LLM returned an unexpected payload", provider=PROVIDER) from exc
    if not isinstance(content, str) or not content.strip():
        raise GenerationError("LLM returned an empty completion", provider=PROVIDER)
    return content


def narration_duration(narration: str) -> float:
    words = len(narration.split())
    return min(max(round(words / WORDS_PER_SECOND, 1), 2.0), 5.0)


def build_script(payload: Mapping[str, Any]) -> Script:
    """Renumber scenes 1..N and compute narration timings."""

    raw_scenes = payload.get("scenes")
    if not isinstance(raw_scenes, list) or not raw_scenes:
        raise GenerationError("Generated script has no scenes", provider=PROVIDER)

    scenes = []
    total_words = 0
    for index, raw in enumerate(raw_scenes):
        if not isinstance(raw, Mapping):
            raise GenerationError(f"Scene {index + 1} is not an object", provider=PROVIDER)
        narration = str(raw.get("narration") or "").strip()
        total_words += len(narration.split())
        scenes.append(
            Scene(
                scene_number=index + 1,
                title=str(raw.get("title") or "").strip(),
                visual=str(raw.get("visual") or "").strip(),
                narration=narration,
                audio_description=str(raw.get("audio_description") or "").strip() or None,
                duration_seconds=narration_duration(narration),
            )
        )

    total = round(sum(scene.duration_seconds or 0 for scene in scenes), 1)
    if not TARGET_SCENES[0] <= len(scenes) <= TARGET_SCENES[1]:
        logger.warning("Script has %d scenes, outside the %d-%d target", len(scenes), *TARGET_SCENES)
    if not TARGET_WORDS[0] <= total_words <= TARGET_WORDS[1]:
        logger.warning("Narration totals %d words, outside the %d-%d target", total_words, *TARGET_WORDS)

    return Script(
        title=str(payload.get("title") or "").strip(),
        music=str(payload.get("music") or "").strip(),
        scenes=tuple(scenes),
        total_duration_seconds=total,
    )


def generate_script(topic: str | None, visual_style: str | None = None) -> Script:
    if not isinstance(topic, str) or not topic.strip():
        raise GenerationError(
            "A topic is required to generate a script",
            provider=PROVIDER,
            status_code=400,
            reason="invalid_request",
        )

    logger.info("Generating script for topic %r (style %s)", topic.strip()[:80], visual_style)
    content = chat_completion(
        SCRIPT_SYSTEM_PROMPT.format(style=describe_style(visual_style)),
        SCRIPT_USER_PROMPT.format(topic=topic.strip()),
    )
    script = build_script(_parse_object(content))
    logger.info(
        "Script ready: %d scenes, %.1fs total", script.scene_count, script.total_duration_seconds or 0
    )
    return script


def generate_image_prompts(script_text: str | None, visual_style: str | None = None) -> list[dict[str, Any]]:
    """Ask the LLM for one English image prompt per scene of ``script_text``."""

    if not isinstance(script_text, str) or not script_text.strip():
        raise ValidationError("A script is required to generate image prompts")

    content = chat_completion(
        PROMPTS_SYSTEM_PROMPT.format(style=describe_style(visual_style)),
        PROMPTS_USER_PROMPT.format(script=script_text.strip()),
    )
    raw_prompts = _parse_object(content).get("prompts")
    if not isinstance(raw_prompts, list):
        raise GenerationError("Completion has no prompts list", provider=PROVIDER)

    prompts = []
    for index, item in enumerate(raw_prompts):
        if not isinstance(item, Mapping):
            continue
        prompt = str(item.get("prompt") or "").strip()
        if not prompt:
            continue
        number = item.get("scene_number")
        prompts.append(
            {
                "scene_number": number if isinstance(number, int) and number > 0 else index + 1,
                "scene_title": str(item.get("scene_title") or "").strip(),
                "prompt": prompt,
            }
        )
    logger.info("Generated %d image prompts", len(prompts))
    return prompts
