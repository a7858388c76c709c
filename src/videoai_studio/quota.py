"""Admission control in front of billable generation steps."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from supabase import Client

from .errors import QuotaError, StorageError

logger = logging.getLogger(__name__)

NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
QUOTA_EXCEEDED = "quota_exceeded"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: str
    used: int
    quota: int
    plan_name: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IncrementResult:
    success: bool
    new_count: int
    quota: int


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _first_row(response: Any) -> dict[str, Any] | None:
    data = getattr(response, "data", None)
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) else None


class QuotaGate:
    def __init__(self, client: Client) -> None:
        self.client = client

    def _rpc(self, name: str, user_id: str) -> dict[str, Any] | None:
        try:
            response = self.client.rpc(name, {"p_user_id": user_id}).execute()
        except Exception as exc:
            logger.exception("RPC %s failed for user %s", name, user_id)
            raise StorageError(f"Failed to call {name}: {exc}") from exc
        return _first_row(response)

    def check(self, user_id: str) -> QuotaDecision:
        row = self._rpc("check_user_quota", user_id)
        if row is None:
            return QuotaDecision(False, NO_ACTIVE_SUBSCRIPTION, 0, 0, "none")

        used = _as_int(row.get("videos_generated"))
        quota = _as_int(row.get("videos_quota"))
        plan_name = row.get("plan_name") or "none"
        raw_reason = str(row.get("reason") or "")

        if bool(row.get("has_quota", True)) and used < quota:
            return QuotaDecision(True, "ok", used, quota, plan_name)
        if "subscription" in raw_reason.lower() or plan_name == "none":
            reason = NO_ACTIVE_SUBSCRIPTION
        else:
            reason = QUOTA_EXCEEDED
        return QuotaDecision(False, reason, used, quota, plan_name)

    def ensure_allowed(self, user_id: str) -> QuotaDecision:
        """Return the decision or raise ``QuotaError`` when access is denied."""

        decision = self.check(user_id)
        if decision.allowed:
            return decision

        logger.warning(
            "Quota denied for user %s: %s (%d/%d, plan %s)",
            user_id,
            decision.reason,
            decision.used,
            decision.quota,
            decision.plan_name,
        )
        if decision.reason == QUOTA_EXCEEDED:
            raise QuotaError(
                f"Monthly quota of {decision.quota} videos reached. Upgrade your plan to continue.",
                status_code=429,
                reason=QUOTA_EXCEEDED,
                videosGenerated=decision.used,
                videosQuota=decision.quota,
                planName=decision.plan_name,
            )
        raise QuotaError(
            "An active subscription is required to generate videos.",
            status_code=403,
            reason=NO_ACTIVE_SUBSCRIPTION,
            videosGenerated=decision.used,
            videosQuota=decision.quota,
            planName=decision.plan_name,
        )

    def increment(self, user_id: str) -> IncrementResult:
        """Count one successful billable generation for ``user_id``."""

        try:
            row = self._rpc("increment_video_count", user_id)
        except StorageError:
            logger.error("Video count for user %s was not incremented", user_id)
            return IncrementResult(False, 0, 0)
        if row is None:
            logger.error("increment_video_count returned no row for user %s", user_id)
            return IncrementResult(False, 0, 0)
        return IncrementResult(
            bool(row.get("success")), _as_int(row.get("new_count")), _as_int(row.get("quota"))
        )

    def subscription(self, user_id: str) -> dict[str, Any] | None:
        return self._rpc("get_user_subscription", user_id)
