"""Pre-flight quota admission for multi-call runs."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from .store import CLAUDE, CODEX, UsageStore

if TYPE_CHECKING:  # pragma: no cover
    from aharadar.libs.schemas.settings import AppSettings

logger = logging.getLogger(__name__)

CLAUDE_SUBSCRIPTION = "claude-subscription"
CODEX_SUBSCRIPTION = "codex-subscription"

DEFAULT_CLAUDE_CALLS_PER_HOUR = 100
DEFAULT_CLAUDE_SEARCHES_PER_HOUR = 20
DEFAULT_CLAUDE_THINKING_TOKENS_PER_HOUR = 50000
DEFAULT_CODEX_CALLS_PER_HOUR = 25


def _int_from(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class QuotaLimits:
    """Hourly ceilings for subscription providers."""

    claude_calls_per_hour: int = DEFAULT_CLAUDE_CALLS_PER_HOUR
    claude_searches_per_hour: int = DEFAULT_CLAUDE_SEARCHES_PER_HOUR
    claude_thinking_tokens_per_hour: int = DEFAULT_CLAUDE_THINKING_TOKENS_PER_HOUR
    codex_calls_per_hour: int = DEFAULT_CODEX_CALLS_PER_HOUR

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "QuotaLimits":
        env = os.environ if env is None else env
        return cls(
            claude_calls_per_hour=_int_from(env, "CLAUDE_CALLS_PER_HOUR", DEFAULT_CLAUDE_CALLS_PER_HOUR),
            claude_searches_per_hour=_int_from(env, "CLAUDE_SEARCHES_PER_HOUR", DEFAULT_CLAUDE_SEARCHES_PER_HOUR),
            claude_thinking_tokens_per_hour=_int_from(
                env, "CLAUDE_THINKING_TOKENS_PER_HOUR", DEFAULT_CLAUDE_THINKING_TOKENS_PER_HOUR
            ),
            codex_calls_per_hour=_int_from(env, "CODEX_CALLS_PER_HOUR", DEFAULT_CODEX_CALLS_PER_HOUR),
        )

    @classmethod
    def from_settings(cls, settings: "AppSettings") -> "QuotaLimits":
        return cls(
            claude_calls_per_hour=settings.claude_calls_per_hour,
            claude_searches_per_hour=settings.claude_searches_per_hour,
            claude_thinking_tokens_per_hour=settings.claude_thinking_tokens_per_hour,
            codex_calls_per_hour=settings.codex_calls_per_hour,
        )


@dataclass(frozen=True)
class _Ceiling:
    store_key: str
    label: str
    calls_per_hour: int


def _ceiling_for(provider: str, limits: QuotaLimits) -> _Ceiling | None:
    """Hourly ceiling for ``provider``; None for API-key billed providers."""

    if provider == CLAUDE_SUBSCRIPTION:
        return _Ceiling(CLAUDE, "Claude", limits.claude_calls_per_hour)
    if provider == CODEX_SUBSCRIPTION:
        return _Ceiling(CODEX, "Codex", limits.codex_calls_per_hour)
    return None


@dataclass(frozen=True)
class QuotaCheckResult:
    ok: bool
    error: str | None = None
    remaining_quota: int | None = None
    expected_calls: int | None = None


def _evaluate(ceiling: _Ceiling, used: int, expected_calls: int) -> QuotaCheckResult:
    limit = ceiling.calls_per_hour
    if used >= limit:
        return QuotaCheckResult(
            ok=False,
            error=(
                f"{ceiling.label} subscription quota exhausted ({limit} calls/hour limit). "
                "Wait for quota reset or switch to API provider."
            ),
            remaining_quota=0,
            expected_calls=expected_calls,
        )
    remaining = max(0, limit - used)
    if remaining < expected_calls:
        return QuotaCheckResult(
            ok=False,
            error=(
                f"Insufficient {ceiling.label} quota for this run. Expected ~{expected_calls} calls "
                f"but only {remaining} calls remaining this hour ({limit} calls/hour limit). "
                "Wait for quota reset, reduce digest depth, or switch to API provider."
            ),
            remaining_quota=remaining,
            expected_calls=expected_calls,
        )
    return QuotaCheckResult(ok=True, remaining_quota=remaining, expected_calls=expected_calls)


def check_quota_for_run(
    store: UsageStore,
    *,
    provider: str,
    expected_calls: int,
    limits: QuotaLimits | None = None,
) -> QuotaCheckResult:
    """Approve or reject a run before any calls are made.

    This is a coarse admission check; individual calls are not gated here.
    """

    ceiling = _ceiling_for(provider, limits or QuotaLimits())
    if ceiling is None:
        return QuotaCheckResult(ok=True)
    used = store.get_usage(ceiling.store_key).calls
    result = _evaluate(ceiling, used, expected_calls)
    if not result.ok:
        logger.info(
            "quota_check_rejected provider=%s used=%s limit=%s expected=%s",
            provider,
            used,
            ceiling.calls_per_hour,
            expected_calls,
        )
    return result


async def check_quota_for_run_async(
    store: UsageStore,
    *,
    provider: str,
    expected_calls: int,
    limits: QuotaLimits | None = None,
) -> QuotaCheckResult:
    """Same as :func:`check_quota_for_run`, reading through the shared store."""

    ceiling = _ceiling_for(provider, limits or QuotaLimits())
    if ceiling is None:
        return QuotaCheckResult(ok=True)
    used = (await store.get_usage_async(ceiling.store_key)).calls
    return _evaluate(ceiling, used, expected_calls)


def expected_triage_calls(max_calls: int, *, batch_enabled: bool, batch_size: int) -> int:
    """Number of model calls a triage run of ``max_calls`` items will make."""

    if max_calls <= 0:
        return 0
    if batch_enabled and batch_size > 1:
        return math.ceil(max_calls / batch_size)
    return max_calls


__all__ = [
    "CLAUDE_SUBSCRIPTION",
    "CODEX_SUBSCRIPTION",
    "QuotaCheckResult",
    "QuotaLimits",
    "check_quota_for_run",
    "check_quota_for_run_async",
    "expected_triage_calls",
]
