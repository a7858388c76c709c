"""Typed errors shared by the gateways, the pipeline and the HTTP layer."""

from __future__ import annotations

from typing import Any


class StudioError(Exception):
    """Base error rendered as ``{"error": message, "reason": reason}``."""

    status_code = 500
    reason = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if reason is not None:
            self.reason = reason
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "reason": self.reason}
        payload.update(self.context)
        return payload


class ValidationError(StudioError):
    status_code = 400
    reason = "invalid_request"


class AuthError(StudioError):
    status_code = 401
    reason = "unauthenticated"


class NotFoundError(StudioError):
    status_code = 404
    reason = "not_found"


class QuotaError(StudioError):
    """Raised by the quota gate before a billable provider call."""

    status_code = 403
    reason = "no_active_subscription"


class ConfigError(StudioError):
    reason = "configuration_error"


class StorageError(StudioError):
    reason = "storage_error"


class GenerationError(StudioError):
    """An upstream provider failed or returned a payload we cannot use."""

    reason = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        http_status: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.provider = provider
        self.http_status = http_status


class JobTimeoutError(GenerationError, TimeoutError):
    """The poll loop reached its deadline before the job became terminal."""

    reason = "provider_timeout"
