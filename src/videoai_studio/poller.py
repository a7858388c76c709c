"""Wait for an asynchronous queue job to reach a terminal state."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from time import monotonic, sleep
from typing import Any

from . import fal_queue
from .errors import GenerationError, JobTimeoutError
from .fal_queue import JobHandle

logger = logging.getLogger(__name__)

SUCCESS_STATES = frozenset({"COMPLETED", "FINISHED", "SUCCESS"})
FAILURE_STATES = frozenset({"FAILED", "ERROR", "CANCELLED", "CANCELED"})


def status_label(payload: Any) -> str:
    if isinstance(payload, Mapping):
        for key in ("status", "state"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip().upper()
    return ""


def log_lines(payload: Any) -> list[str]:
    """Collect provider log messages from a status payload."""

    if not isinstance(payload, Mapping):
        return []
    logs = payload.get("logs")
    if not isinstance(logs, Sequence) or isinstance(logs, (str, bytes)):
        return []
    lines: list[str] = []
    for entry in logs:
        if isinstance(entry, Mapping):
            message = entry.get("message")
            if isinstance(message, str) and message.strip():
                lines.append(message.strip())
        elif isinstance(entry, str) and entry.strip():
            lines.append(entry.strip())
    return lines


def await_job(
    handle: JobHandle,
    poll_interval: float,
    timeout: float,
    *,
    fetch_status: Callable[[JobHandle], dict] | None = None,
    fetch_result: Callable[[JobHandle], dict] | None = None,
) -> dict:
    """Poll ``handle`` until it completes and return the result payload.

    ``poll_interval`` and ``timeout`` are in seconds. A failed, errored or
    cancelled job raises ``GenerationError`` with the provider logs attached;
    running out of time raises ``JobTimeoutError``.
    """

    fetch_status = fetch_status or (lambda h: fal_queue.get_status(h, with_logs=True))
    fetch_result = fetch_result or fal_queue.get_result

    started = monotonic()
    attempts = 0
    while True:
        elapsed = monotonic() - started
        if elapsed >= timeout:
            break
        attempts += 1
        payload = fetch_status(handle)
        label = status_label(payload)

        if label in SUCCESS_STATES:
            logger.info(
                "%s job %s completed after %.1fs (%d polls)",
                handle.provider,
                handle.request_id,
                monotonic() - started,
                attempts,
            )
            return fetch_result(handle)

        if label in FAILURE_STATES:
            lines = log_lines(payload)
            detail = fal_queue.error_detail(payload) or f"status {label}"
            logger.error(
                "%s job %s failed after %.1fs: %s",
                handle.provider,
                handle.request_id,
                monotonic() - started,
                detail,
            )
            raise GenerationError(
                f"{handle.provider} job {handle.request_id} failed: {detail}",
                provider=handle.provider,
                logs=lines or None,
            )

        remaining = timeout - (monotonic() - started)
        if remaining <= 0:
            break
        sleep(min(poll_interval, remaining))

    elapsed = monotonic() - started
    logger.error(
        "%s job %s timed out after %.1fs (%d polls)",
        handle.provider,
        handle.request_id,
        elapsed,
        attempts,
    )
    raise JobTimeoutError(
        f"{handle.provider} job {handle.request_id} did not finish within {timeout:g}s",
        provider=handle.provider,
        elapsed=round(elapsed, 3),
    )
