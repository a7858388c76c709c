"""Environment-driven settings, read at invocation time."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

FAL_KEY_ALIASES = ("FAL_KEY", "FAL_API_KEY", "FALAI_API_KEY", "FAL_AI_API_KEY")


def require_env(*names: str) -> str:
    """Return the first non-empty variable among ``names``.

    Raises ``ConfigError`` when none is set so the current request fails
    loudly instead of calling a provider without credentials.
    """

    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    raise ConfigError(f"Missing required configuration: {' or '.join(names)}")


def read_int_env(name: str, default: int, *, minimum: int | None = None) -> int:
    """Return ``name`` as integer with fallback to ``default`` and ``minimum``."""

    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return minimum
    return value


@dataclass(frozen=True)
class PollSettings:
    interval: float
    timeout: float


def image_poll_settings() -> PollSettings:
    return PollSettings(
        interval=read_int_env("IMAGE_POLL_INTERVAL_MS", 2000, minimum=10) / 1000,
        timeout=read_int_env("IMAGE_POLL_TIMEOUT_MS", 240_000, minimum=100) / 1000,
    )


def video_poll_settings() -> PollSettings:
    return PollSettings(
        interval=read_int_env("VIDEO_POLL_INTERVAL_MS", 5000, minimum=10) / 1000,
        timeout=read_int_env("VIDEO_POLL_TIMEOUT_MS", 300_000, minimum=100) / 1000,
    )


def image_bucket() -> str:
    return os.getenv("IMAGE_BUCKET", "generated-images")


def video_bucket() -> str:
    return os.getenv("VIDEO_BUCKET", "generated-videos")


def audio_bucket() -> str:
    return os.getenv("AUDIO_BUCKET", "generated-audio")
