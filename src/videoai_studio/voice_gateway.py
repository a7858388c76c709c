"""Synchronous narration synthesis with Cartesia."""

from __future__ import annotations

import logging
import os

import requests
from requests import exceptions as requests_exceptions

from .config import require_env
from .errors import GenerationError
from .fal_queue import raise_for_provider

logger = logging.getLogger(__name__)

PROVIDER = "cartesia"
CONTENT_TYPE = "audio/wav"
REQUEST_TIMEOUT = 60


def synthesize(narration: str | None) -> tuple[bytes, str]:
    if not isinstance(narration, str) or not narration.strip():
        raise GenerationError(
            "Narration is required and must be a non-empty string",
            provider=PROVIDER,
            status_code=400,
            reason="invalid_request",
        )

    api_key = require_env("CARTESIA_API_KEY")
    transcript = narration.strip()
    logger.info("Synthesizing narration: %s...", transcript[:50])
    try:
        response = requests.post(
            os.getenv("CARTESIA_URL", "https://api.cartesia.ai/tts/bytes"),
            headers={
                "X-API-Key": api_key,
                "Cartesia-Version": "2025-04-16",
                "Content-Type": "application/json",
                "Accept": CONTENT_TYPE,
            },
            json={
                "model_id": os.getenv("CARTESIA_MODEL", "sonic-english"),
                "transcript": transcript,
                "voice": {
                    "id": os.getenv("CARTESIA_VOICE_ID", "bd94e5a0-2b7a-4762-9b91-6eac6342f852")
                },
                "output_format": {"container": "wav", "sample_rate": 16000},
            },
            timeout=REQUEST_TIMEOUT,
        )
    except requests_exceptions.RequestException as exc:
        raise GenerationError(f"Cartesia request failed: {exc}", provider=PROVIDER) from exc
    raise_for_provider(response, PROVIDER)

    logger.info("Narration synthesized (%d bytes)", len(response.content))
    return response.content, CONTENT_TYPE
