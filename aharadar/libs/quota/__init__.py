"""Hourly quota tracking and admission for subscription providers."""

from .gate import (
    CLAUDE_SUBSCRIPTION,
    CODEX_SUBSCRIPTION,
    QuotaCheckResult,
    QuotaLimits,
    check_quota_for_run,
    check_quota_for_run_async,
    expected_triage_calls,
)
from .status import ProviderQuotaStatus, QuotaStatusResponse, get_quota_status, get_quota_status_async
from .store import CLAUDE, CODEX, UsageCounts, UsageStore, init_usage_store

__all__ = [
    "CLAUDE",
    "CLAUDE_SUBSCRIPTION",
    "CODEX",
    "CODEX_SUBSCRIPTION",
    "ProviderQuotaStatus",
    "QuotaCheckResult",
    "QuotaLimits",
    "QuotaStatusResponse",
    "UsageCounts",
    "UsageStore",
    "check_quota_for_run",
    "check_quota_for_run_async",
    "expected_triage_calls",
    "get_quota_status",
    "get_quota_status_async",
    "init_usage_store",
]
