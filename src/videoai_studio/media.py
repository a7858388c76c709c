"""Provider media references and the helpers that resolve them to bytes."""

from __future__ import annotations

import base64
import binascii
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

import requests
from requests import exceptions as requests_exceptions

from .errors import GenerationError

logger = logging.getLogger(__name__)

PROMPT_MAX_LENGTH = 2000
ALLOWED_DURATIONS = (1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 12, 15, 20, 30)
DOWNLOAD_TIMEOUT = 60

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*?);base64,(?P<data>.*)$", re.S)
_WHITESPACE_RE = re.compile(r"\s+")

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "audio/wav": "wav",
    "audio/mpeg": "mp3",
}


@dataclass(frozen=True)
class UrlMedia:
    url: str
    content_type: str | None = None


@dataclass(frozen=True)
class Base64Media:
    data: str
    content_type: str | None = None


@dataclass(frozen=True)
class BinaryMedia:
    content: bytes
    content_type: str | None = None


MediaReference = Union[UrlMedia, Base64Media, BinaryMedia]


def normalize_prompt(text: str | None, max_length: int = PROMPT_MAX_LENGTH) -> str:
    """Collapse whitespace and cut ``text`` to ``max_length`` characters."""

    collapsed = _WHITESPACE_RE.sub(" ", text or "").strip()
    if len(collapsed) > max_length:
        logger.warning(
            "Prompt truncated from %d to %d characters", len(collapsed), max_length
        )
        collapsed = collapsed[:max_length]
    return collapsed


def snap_duration(value: Any) -> int | None:
    """Snap a requested clip duration to the nearest supported value."""

    if value is None:
        return None
    numeric: float | None = None
    if not isinstance(value, bool):
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            numeric = None
    if numeric is None or math.isnan(numeric):
        logger.warning("Ignoring non-numeric video duration %r", value)
        return None
    clamped = round(min(max(numeric, 1.0), 30.0))
    return min(ALLOWED_DURATIONS, key=lambda allowed: (abs(allowed - clamped), allowed))


def extension_for(content_type: str | None, default: str = "bin") -> str:
    if content_type:
        return _EXTENSIONS.get(content_type.split(";")[0].strip().lower(), default)
    return default


def to_data_uri(content: bytes, content_type: str) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def _from_string(value: str, content_type: str | None) -> MediaReference | None:
    stripped = value.strip()
    if not stripped:
        return None
    if stripped.startswith(("http://", "https://")):
        return UrlMedia(stripped, content_type)
    match = _DATA_URI_RE.match(stripped)
    if match:
        return Base64Media(match.group("data"), match.group("mime") or content_type)
    return Base64Media(stripped, content_type)


def parse_media_reference(value: Any) -> MediaReference | None:
    """Normalize a provider media field into a ``MediaReference``.

    Accepts a URL, an inline data URI, a raw base64 string, raw bytes or a
    mapping carrying one of those under ``url``, ``data``, ``base64``,
    ``b64_json`` or ``content``.
    """

    if isinstance(value, (bytes, bytearray)):
        return BinaryMedia(bytes(value)) if value else None
    if isinstance(value, str):
        return _from_string(value, None)
    if isinstance(value, Mapping):
        content_type = value.get("content_type") or value.get("mime_type")
        if not isinstance(content_type, str):
            content_type = None
        for key in ("url", "data", "base64", "b64_json", "content"):
            candidate = value.get(key)
            if isinstance(candidate, (bytes, bytearray)) and candidate:
                return BinaryMedia(bytes(candidate), content_type)
            if isinstance(candidate, str):
                reference = _from_string(candidate, content_type)
                if reference is not None:
                    return reference
    return None


def load_media_bytes(reference: MediaReference, *, provider: str) -> tuple[bytes, str]:
    """Resolve ``reference`` to raw bytes and a content type."""

    if isinstance(reference, BinaryMedia):
        return reference.content, reference.content_type or "application/octet-stream"

    if isinstance(reference, Base64Media):
        try:
            content = base64.b64decode(reference.data, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise GenerationError(
                f"{provider} returned an undecodable base64 payload", provider=provider
            ) from exc
        if not content:
            raise GenerationError(f"{provider} returned an empty payload", provider=provider)
        return content, reference.content_type or "application/octet-stream"

    try:
        response = requests.get(reference.url, timeout=DOWNLOAD_TIMEOUT)
    except requests_exceptions.RequestException as exc:
        raise GenerationError(
            f"Unable to download {reference.url}: {exc}", provider=provider
        ) from exc
    if not response.ok:
        raise GenerationError(
            f"Unable to download {reference.url} ({response.status_code})",
            provider=provider,
            http_status=response.status_code,
        )
    header_type = response.headers.get("Content-Type")
    content_type = reference.content_type or (header_type.split(";")[0] if header_type else None)
    return response.content, content_type or "application/octet-stream"
