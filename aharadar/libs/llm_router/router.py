"""Environment-driven model router with subscription quota awareness."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, MutableMapping

from aharadar.libs.quota.gate import CLAUDE_SUBSCRIPTION, CODEX_SUBSCRIPTION, QuotaLimits
from aharadar.libs.quota.store import CLAUDE, CODEX, UsageStore

from .anthropic_provider import ANTHROPIC_MESSAGES_ENDPOINT, AnthropicProvider
from .base import BaseProvider
from .claude_subscription import CLAUDE_SUBSCRIPTION_ENDPOINT, ClaudeSubscriptionProvider
from .codex_subscription import (
    CODEX_SUBSCRIPTION_ENDPOINT,
    DEFAULT_CODEX_TIMEOUT_SECONDS,
    CodexSubscriptionProvider,
)
from .errors import LlmConfigError, QuotaExceededError, classify_llm_error
from .openai_provider import OpenAIProvider, is_chat_completions_endpoint
from .rest import DEFAULT_HTTP_TIMEOUT_SECONDS
from .types import BudgetTier, LlmCallResult, LlmRequest, ModelRef, ReasoningEffort, TaskType

OPENAI = "openai"
ANTHROPIC = "anthropic"
PROVIDERS: tuple[str, ...] = (OPENAI, ANTHROPIC, CLAUDE_SUBSCRIPTION, CODEX_SUBSCRIPTION)

ANTHROPIC_TIER_DEFAULTS: dict[BudgetTier, str] = {
    BudgetTier.LOW: "claude-3-5-haiku-latest",
    BudgetTier.NORMAL: "claude-sonnet-4-5",
    BudgetTier.HIGH: "claude-sonnet-4-5",
}


def first_env(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def env_flag(env: Mapping[str, str], name: str) -> bool:
    return (env.get(name) or "").strip().lower() == "true"


def _with_v1(base_url: str, path_after_v1: str) -> str:
    trimmed = base_url.rstrip("/")
    if trimmed.endswith("/v1"):
        return f"{trimmed}{path_after_v1}"
    return f"{trimmed}/v1{path_after_v1}"


def resolve_openai_endpoint(env: Mapping[str, str]) -> str:
    """Responses endpoint from ``OPENAI_ENDPOINT`` or ``OPENAI_BASE_URL``."""

    explicit = first_env(env, "OPENAI_ENDPOINT")
    base_url = first_env(env, "OPENAI_BASE_URL")
    responses_default = _with_v1(base_url, "/responses") if base_url else None

    endpoint = explicit or responses_default
    if not endpoint:
        raise LlmConfigError("Missing required env var: OPENAI_ENDPOINT (or OPENAI_BASE_URL)")
    if is_chat_completions_endpoint(endpoint):
        if "/v1/chat/completions" in endpoint:
            endpoint = endpoint.replace("/v1/chat/completions", "/v1/responses")
        elif responses_default:
            endpoint = responses_default
    return endpoint


def resolve_openai_model(env: Mapping[str, str], task: TaskType, tier: BudgetTier) -> str:
    key = task.config_key
    model = first_env(
        env,
        f"OPENAI_{key}_MODEL_{tier.value.upper()}",
        f"OPENAI_{key}_MODEL",
        "OPENAI_MODEL",
    )
    if model is None:
        raise LlmConfigError(
            f"Missing model env var for OpenAI task: {task.value} (set OPENAI_{key}_MODEL)"
        )
    return model


def resolve_anthropic_model(env: Mapping[str, str], task: TaskType, tier: BudgetTier) -> str:
    key = task.config_key
    model = first_env(
        env,
        f"ANTHROPIC_{key}_MODEL_{tier.value.upper()}",
        f"ANTHROPIC_{key}_MODEL",
        "ANTHROPIC_MODEL",
    )
    return model or ANTHROPIC_TIER_DEFAULTS[tier]


def resolve_claude_subscription_model(env: Mapping[str, str], task: TaskType, tier: BudgetTier) -> str:
    model = first_env(env, f"CLAUDE_{task.config_key}_MODEL", "CLAUDE_MODEL")
    return model or resolve_anthropic_model(env, task, tier)


def resolve_codex_subscription_model(env: Mapping[str, str], task: TaskType, tier: BudgetTier) -> str:
    model = first_env(env, f"CODEX_{task.config_key}_MODEL", "CODEX_MODEL")
    return model or resolve_openai_model(env, task, tier)


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = first_env(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class EnvLlmRouter:
    """Resolve models from configuration and dispatch calls to adapters."""

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        usage_store: UsageStore | None = None,
        limits: QuotaLimits | None = None,
        providers: Mapping[str, BaseProvider] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env: dict[str, str] = dict(os.environ if env is None else env)
        self._openai_key = first_env(self.env, "OPENAI_API_KEY")
        self._anthropic_key = first_env(self.env, "ANTHROPIC_API_KEY")
        self._claude_enabled = env_flag(self.env, "CLAUDE_USE_SUBSCRIPTION")
        self._codex_enabled = env_flag(self.env, "CODEX_USE_SUBSCRIPTION")
        if not (self._openai_key or self._anthropic_key or self._claude_enabled or self._codex_enabled):
            raise LlmConfigError(
                "Missing required env var: OPENAI_API_KEY or ANTHROPIC_API_KEY "
                "(or enable CLAUDE_USE_SUBSCRIPTION or CODEX_USE_SUBSCRIPTION)"
            )
        self._usage_store = usage_store or UsageStore()
        self._limits = limits or QuotaLimits.from_env(self.env)
        self._logger = logger or logging.getLogger(__name__)
        self._providers: MutableMapping[str, BaseProvider] = dict(providers or {})

    @property
    def usage_store(self) -> UsageStore:
        return self._usage_store

    def register_provider(self, key: str, provider: BaseProvider) -> None:
        """Register or replace the adapter serving ``key``."""

        if key not in PROVIDERS:
            raise ValueError(f"Unknown LLM provider '{key}'")
        self._providers[key] = provider

    # model selection

    def choose_model(self, task: TaskType | str, tier: BudgetTier | str) -> ModelRef:
        task = TaskType(task)
        tier = BudgetTier(tier)
        provider = self._resolve_provider(task)

        if provider == CLAUDE_SUBSCRIPTION:
            return ModelRef(
                provider=provider,
                model=resolve_claude_subscription_model(self.env, task, tier),
                endpoint=CLAUDE_SUBSCRIPTION_ENDPOINT,
            )
        if provider == CODEX_SUBSCRIPTION:
            return ModelRef(
                provider=provider,
                model=resolve_codex_subscription_model(self.env, task, tier),
                endpoint=CODEX_SUBSCRIPTION_ENDPOINT,
            )
        if provider == ANTHROPIC:
            if not self._anthropic_key:
                raise LlmConfigError("ANTHROPIC_API_KEY required when using Anthropic provider")
            return ModelRef(
                provider=ANTHROPIC,
                model=resolve_anthropic_model(self.env, task, tier),
                endpoint=first_env(self.env, "ANTHROPIC_ENDPOINT") or ANTHROPIC_MESSAGES_ENDPOINT,
            )
        if not self._openai_key:
            raise LlmConfigError("OPENAI_API_KEY required when using OpenAI provider")
        return ModelRef(
            provider=OPENAI,
            model=resolve_openai_model(self.env, task, tier),
            endpoint=resolve_openai_endpoint(self.env),
        )

    def _resolve_provider(self, task: TaskType) -> str:
        global_provider = (self.env.get("LLM_PROVIDER") or "").strip().lower()
        if global_provider in (CLAUDE_SUBSCRIPTION, CODEX_SUBSCRIPTION):
            return self._admit_subscription(global_provider, label="Provider")
        if global_provider == ANTHROPIC and self._anthropic_key:
            return ANTHROPIC
        if global_provider == OPENAI and self._openai_key:
            return OPENAI

        task_provider = (self.env.get(f"LLM_{task.config_key}_PROVIDER") or "").strip().lower()
        if task_provider == ANTHROPIC and self._anthropic_key:
            return ANTHROPIC
        if task_provider == OPENAI and self._openai_key:
            return OPENAI
        if task_provider in (CLAUDE_SUBSCRIPTION, CODEX_SUBSCRIPTION):
            return self._admit_subscription(task_provider, label="Task provider")

        if self._anthropic_key:
            return ANTHROPIC
        return OPENAI

    def _admit_subscription(self, provider: str, *, label: str) -> str:
        if provider == CLAUDE_SUBSCRIPTION:
            enabled, flag, store_key, name, limit = (
                self._claude_enabled,
                "CLAUDE_USE_SUBSCRIPTION",
                CLAUDE,
                "Claude",
                self._limits.claude_calls_per_hour,
            )
        else:
            enabled, flag, store_key, name, limit = (
                self._codex_enabled,
                "CODEX_USE_SUBSCRIPTION",
                CODEX,
                "Codex",
                self._limits.codex_calls_per_hour,
            )
        if not enabled:
            raise LlmConfigError(f"{label} '{provider}' selected but {flag} is not enabled")
        if not self._usage_store.can_use(store_key, limit):
            raise QuotaExceededError(
                f"{name} subscription quota exceeded ({limit} calls/hour). "
                "Wait for quota reset or increase limit in settings."
            )
        return provider

    # dispatch

    def _provider(self, name: str) -> BaseProvider:
        provider = self._providers.get(name)
        if provider is not None:
            return provider

        timeout = _float_env(self.env, "LLM_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS)
        if name == OPENAI:
            if not self._openai_key:
                raise LlmConfigError("OPENAI_API_KEY required for OpenAI calls")
            provider = OpenAIProvider(self._openai_key, timeout=timeout)
        elif name == ANTHROPIC:
            if not self._anthropic_key:
                raise LlmConfigError("ANTHROPIC_API_KEY required for Anthropic calls")
            provider = AnthropicProvider(self._anthropic_key, timeout=timeout)
        elif name == CLAUDE_SUBSCRIPTION:
            provider = ClaudeSubscriptionProvider(
                usage_store=self._usage_store,
                triage_thinking=env_flag(self.env, "CLAUDE_TRIAGE_THINKING"),
            )
        elif name == CODEX_SUBSCRIPTION:
            provider = CodexSubscriptionProvider(
                usage_store=self._usage_store,
                command=first_env(self.env, "CODEX_COMMAND") or "codex",
                timeout=_float_env(self.env, "CODEX_TIMEOUT_SECONDS", DEFAULT_CODEX_TIMEOUT_SECONDS),
            )
        else:
            raise LlmConfigError(f"Unknown LLM provider '{name}'")
        self._providers[name] = provider
        return provider

    async def call(self, task: TaskType | str, ref: ModelRef, request: LlmRequest) -> LlmCallResult:
        task = TaskType(task)
        provider = self._provider(ref.provider)
        try:
            result = await provider.call(ref, request, task=task)
        except Exception as exc:
            classified = classify_llm_error(exc)
            if classified is exc:
                raise
            self._logger.warning(
                "llm_task=%s provider=%s model=%s auth_error=%s", task.value, ref.provider, ref.model, exc
            )
            raise classified from exc
        self._log_usage(task, ref, result)
        return result

    def _log_usage(self, task: TaskType, ref: ModelRef, result: LlmCallResult) -> None:
        self._logger.info(
            "llm_task=%s provider=%s model=%s input_tokens=%s output_tokens=%s endpoint=%s",
            task.value,
            ref.provider,
            ref.model,
            result.input_tokens,
            result.output_tokens,
            result.endpoint,
        )


@dataclass
class LlmRuntimeConfig:
    """Runtime overrides layered on top of the environment."""

    provider: str | None = None
    anthropic_model: str | None = None
    openai_model: str | None = None
    claude_subscription_enabled: bool | None = None
    claude_triage_thinking: bool | None = None
    claude_calls_per_hour: int | None = None
    codex_subscription_enabled: bool | None = None
    codex_calls_per_hour: int | None = None
    reasoning_effort: ReasoningEffort | None = None
    triage_batch_enabled: bool | None = None
    triage_batch_size: int | None = None


def _routing_keys() -> list[str]:
    return list(dict.fromkeys(task.config_key for task in TaskType))


def _apply_task_model_overrides(
    env: MutableMapping[str, str],
    prefix: str,
    model: str,
    *,
    include_tiered: bool,
) -> None:
    env[f"{prefix}_MODEL"] = model
    for key in _routing_keys():
        task_key = f"{prefix}_{key}_MODEL"
        env[task_key] = model
        if include_tiered:
            for tier in BudgetTier:
                env[f"{task_key}_{tier.value.upper()}"] = model


def _bool_str(value: bool) -> str:
    return "true" if value else "false"


def apply_runtime_config(env: Mapping[str, str], config: LlmRuntimeConfig) -> dict[str, str]:
    """Return a copy of ``env`` with ``config`` applied."""

    effective = dict(env)
    if config.provider is not None:
        effective["LLM_PROVIDER"] = config.provider
    if config.claude_subscription_enabled is not None:
        effective["CLAUDE_USE_SUBSCRIPTION"] = _bool_str(config.claude_subscription_enabled)
    if config.claude_triage_thinking is not None:
        effective["CLAUDE_TRIAGE_THINKING"] = _bool_str(config.claude_triage_thinking)
    if config.claude_calls_per_hour is not None:
        effective["CLAUDE_CALLS_PER_HOUR"] = str(config.claude_calls_per_hour)
    if config.anthropic_model is not None:
        _apply_task_model_overrides(effective, "ANTHROPIC", config.anthropic_model, include_tiered=True)
        _apply_task_model_overrides(effective, "CLAUDE", config.anthropic_model, include_tiered=False)
    if config.openai_model is not None:
        _apply_task_model_overrides(effective, "OPENAI", config.openai_model, include_tiered=True)
        _apply_task_model_overrides(effective, "CODEX", config.openai_model, include_tiered=False)
    if config.codex_subscription_enabled is not None:
        effective["CODEX_USE_SUBSCRIPTION"] = _bool_str(config.codex_subscription_enabled)
    if config.codex_calls_per_hour is not None:
        effective["CODEX_CALLS_PER_HOUR"] = str(config.codex_calls_per_hour)
    if config.reasoning_effort is not None:
        effort = ReasoningEffort(config.reasoning_effort).value
        effective["OPENAI_TRIAGE_REASONING_EFFORT"] = effort
        effective["OPENAI_DEEP_SUMMARY_REASONING_EFFORT"] = effort
    if config.triage_batch_enabled is not None:
        effective["TRIAGE_BATCH_ENABLED"] = _bool_str(config.triage_batch_enabled)
    if config.triage_batch_size is not None:
        effective["TRIAGE_BATCH_SIZE"] = str(config.triage_batch_size)
    return effective


def create_configured_router(
    env: Mapping[str, str] | None = None,
    config: LlmRuntimeConfig | None = None,
    *,
    usage_store: UsageStore | None = None,
    providers: Mapping[str, BaseProvider] | None = None,
) -> EnvLlmRouter:
    """Build a router from the environment plus optional runtime overrides."""

    base_env: Mapping[str, str] = os.environ if env is None else env
    effective = apply_runtime_config(base_env, config) if config is not None else dict(base_env)
    return EnvLlmRouter(effective, usage_store=usage_store, providers=providers)


__all__ = [
    "ANTHROPIC",
    "EnvLlmRouter",
    "LlmRuntimeConfig",
    "OPENAI",
    "PROVIDERS",
    "apply_runtime_config",
    "create_configured_router",
    "resolve_anthropic_model",
    "resolve_openai_endpoint",
    "resolve_openai_model",
]
