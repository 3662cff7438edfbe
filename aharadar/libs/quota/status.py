"""Read-only quota snapshot for display surfaces."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from .gate import QuotaLimits
from .store import CLAUDE, CODEX, UsageCounts, UsageStore


class ProviderQuotaStatus(BaseModel):
    used: int
    limit: int
    remaining: int
    reset_at: datetime


class QuotaStatusResponse(BaseModel):
    claude: ProviderQuotaStatus | None = None
    codex: ProviderQuotaStatus | None = None


def _status(usage: UsageCounts, limit: int, reset_at: datetime) -> ProviderQuotaStatus:
    return ProviderQuotaStatus(
        used=usage.calls,
        limit=limit,
        remaining=max(0, limit - usage.calls),
        reset_at=reset_at,
    )


def get_quota_status(store: UsageStore, limits: QuotaLimits | None = None) -> QuotaStatusResponse:
    limits = limits or QuotaLimits()
    reset_at = store.reset_at()
    return QuotaStatusResponse(
        claude=_status(store.get_usage(CLAUDE), limits.claude_calls_per_hour, reset_at),
        codex=_status(store.get_usage(CODEX), limits.codex_calls_per_hour, reset_at),
    )


async def get_quota_status_async(
    store: UsageStore,
    limits: QuotaLimits | None = None,
) -> QuotaStatusResponse:
    limits = limits or QuotaLimits()
    reset_at = store.reset_at()
    claude = await store.get_usage_async(CLAUDE)
    codex = await store.get_usage_async(CODEX)
    return QuotaStatusResponse(
        claude=_status(claude, limits.claude_calls_per_hour, reset_at),
        codex=_status(codex, limits.codex_calls_per_hour, reset_at),
    )


__all__ = [
    "ProviderQuotaStatus",
    "QuotaStatusResponse",
    "get_quota_status",
    "get_quota_status_async",
]
