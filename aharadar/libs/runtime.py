"""Process-wide usage store and router built from application settings."""

from __future__ import annotations

import logging
import os
from typing import Mapping

from aharadar.libs.llm_router.router import EnvLlmRouter, LlmRuntimeConfig, apply_runtime_config
from aharadar.libs.logging_utils import configure_logging
from aharadar.libs.quota.gate import QuotaLimits
from aharadar.libs.quota.store import UsageStore, init_usage_store
from aharadar.libs.schemas.settings import AppSettings, get_settings

LOGGER = logging.getLogger(__name__)

_STORE: UsageStore | None = None
_ROUTER: EnvLlmRouter | None = None


def setup_logging(settings: AppSettings | None = None) -> None:
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, log_format=settings.log_format)


def get_usage_store(settings: AppSettings | None = None) -> UsageStore:
    """Return the shared usage store, creating it on first use."""

    global _STORE
    if _STORE is None:
        settings = settings or get_settings()
        _STORE = init_usage_store(settings.redis_url, cache_ttl=settings.quota_cache_ttl_seconds)
    return _STORE


def settings_env(settings: AppSettings, env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment mapping with typed settings written back under their plain names."""

    effective = dict(os.environ if env is None else env)
    if settings.llm_provider:
        effective["LLM_PROVIDER"] = settings.llm_provider
    effective["LLM_HTTP_TIMEOUT_SECONDS"] = str(settings.http_timeout_seconds)
    effective["CLAUDE_CALLS_PER_HOUR"] = str(settings.claude_calls_per_hour)
    effective["CLAUDE_SEARCHES_PER_HOUR"] = str(settings.claude_searches_per_hour)
    effective["CLAUDE_THINKING_TOKENS_PER_HOUR"] = str(settings.claude_thinking_tokens_per_hour)
    effective["CODEX_CALLS_PER_HOUR"] = str(settings.codex_calls_per_hour)
    effective["TRIAGE_BATCH_ENABLED"] = "true" if settings.triage_batch_enabled else "false"
    effective["TRIAGE_BATCH_SIZE"] = str(settings.triage_batch_size)
    return effective


def get_router(
    config: LlmRuntimeConfig | None = None,
    *,
    settings: AppSettings | None = None,
    env: Mapping[str, str] | None = None,
) -> EnvLlmRouter:
    """Return the process router; runtime overrides always build a fresh one."""

    global _ROUTER
    if _ROUTER is not None and config is None and env is None:
        return _ROUTER

    settings = settings or get_settings()
    effective = settings_env(settings, env)
    if config is not None:
        effective = apply_runtime_config(effective, config)
    router = EnvLlmRouter(effective, usage_store=get_usage_store(settings), limits=QuotaLimits.from_env(effective))
    LOGGER.info(
        "llm_router ready provider=%s shared_quota=%s",
        effective.get("LLM_PROVIDER"),
        router.usage_store.shared,
    )
    if config is None and env is None:
        _ROUTER = router
    return router


async def shutdown() -> None:
    """Flush pending quota writes and drop the cached store and router."""

    global _STORE, _ROUTER
    store, _STORE, _ROUTER = _STORE, None, None
    if store is not None:
        await store.aclose()


__all__ = ["get_router", "get_usage_store", "settings_env", "setup_logging", "shutdown"]
