"""Thin client for the fal.ai queue REST API (submit, status, result)."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import requests
from requests import exceptions as requests_exceptions

from .config import FAL_KEY_ALIASES, require_env
from .errors import GenerationError

logger = logging.getLogger(__name__)

PROVIDER = "fal"
REQUEST_TIMEOUT = 30


@dataclass(frozen=True)
class JobHandle:
    """Provider-issued pointers to an in-flight queue request."""

    request_id: str
    status_url: str
    response_url: str
    model_id: str = ""
    provider: str = PROVIDER


def queue_base() -> str:
    return os.getenv("FAL_QUEUE_BASE", "https://queue.fal.run").rstrip("/")


def _headers(json: bool = True) -> dict[str, str]:
    headers = {"Authorization": f"Key {require_env(*FAL_KEY_ALIASES)}"}
    if json:
        headers["Content-Type"] = "application/json"
    return headers


def _normalize_input(input_data: str | Mapping[str, Any]) -> dict[str, Any]:
    """Return a JSON-serialisable payload for fal.ai submissions."""

    if isinstance(input_data, Mapping):
        return {key: value for key, value in input_data.items() if value is not None}
    return {"prompt": input_data}


def _queue_request_url(model_id: str, *parts: str) -> str:
    """Return a fully qualified queue endpoint for *model_id* and *parts*."""

    base_path = model_id.strip("/")
    extra = "/".join(part.strip("/") for part in parts if part)
    if extra:
        return f"{queue_base()}/{base_path}/{extra}"
    return f"{queue_base()}/{base_path}"


def error_detail(payload: object) -> str | None:
    """Extract a human readable error message from a provider payload."""

    if isinstance(payload, Mapping):
        for key in ("error", "detail", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            nested = error_detail(value) if value is not None else None
            if nested:
                return nested
    elif isinstance(payload, Sequence) and not isinstance(payload, (str, bytes, bytearray)):
        for item in payload:
            nested = error_detail(item)
            if nested:
                return nested
    elif isinstance(payload, str) and payload.strip():
        return payload.strip()
    return None


def raise_for_provider(response: requests.Response, provider: str) -> None:
    """Turn a non-2xx provider response into ``GenerationError``."""

    if response.ok:
        return
    try:
        detail = error_detail(response.json())
    except ValueError:
        detail = response.text.strip() or None
    message = f"{provider} error {response.status_code}"
    if detail:
        message = f"{message}: {detail}"
    raise GenerationError(message, provider=provider, http_status=response.status_code)


def _json_object(response: requests.Response, provider: str) -> dict:
    """Decode a 2xx provider body that must be a JSON object."""

    try:
        data = response.json()
    except ValueError as exc:
        raise GenerationError(f"{provider} returned a non-JSON body", provider=provider) from exc
    if not isinstance(data, dict):
        raise GenerationError(
            f"{provider} returned a {type(data).__name__} instead of an object", provider=provider
        )
    return data


def submit(model_id: str, input_data: str | Mapping[str, Any]) -> JobHandle:
    """Queue a request for ``model_id`` and return its handle."""

    endpoint = _queue_request_url(model_id)
    try:
        response = requests.post(
            endpoint,
            headers=_headers(),
            data=json.dumps(_normalize_input(input_data)),
            timeout=REQUEST_TIMEOUT,
        )
    except requests_exceptions.RequestException as exc:
        raise GenerationError(f"fal.ai submission failed: {exc}", provider=PROVIDER) from exc
    raise_for_provider(response, PROVIDER)

    data = _json_object(response, PROVIDER)
    request_id = data.get("request_id") or data.get("id")
    if not request_id:
        raise GenerationError("fal.ai request id missing", provider=PROVIDER)

    handle = JobHandle(
        request_id=request_id,
        status_url=data.get("status_url")
        or _queue_request_url(model_id, "requests", request_id, "status"),
        response_url=data.get("response_url")
        or _queue_request_url(model_id, "requests", request_id),
        model_id=model_id,
    )
    logger.info("Queued fal.ai request %s on %s", request_id, model_id)
    return handle


def get_status(handle: JobHandle, *, with_logs: bool = False) -> dict:
    params = {"logs": "1"} if with_logs else None
    try:
        response = requests.get(
            handle.status_url,
            headers=_headers(False),
            params=params,
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code == 405:
            response = requests.post(
                handle.status_url,
                headers=_headers(),
                json={"with_logs": bool(with_logs)},
                timeout=REQUEST_TIMEOUT,
            )
    except requests_exceptions.RequestException as exc:
        raise GenerationError(
            f"fal.ai status check failed: {exc}", provider=handle.provider
        ) from exc
    raise_for_provider(response, handle.provider)
    return _json_object(response, handle.provider)


def get_result(handle: JobHandle) -> dict:
    try:
        response = requests.get(
            handle.response_url, headers=_headers(False), timeout=REQUEST_TIMEOUT
        )
    except requests_exceptions.RequestException as exc:
        raise GenerationError(
            f"fal.ai result fetch failed: {exc}", provider=handle.provider
        ) from exc
    raise_for_provider(response, handle.provider)
    return _json_object(response, handle.provider)
