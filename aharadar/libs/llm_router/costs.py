"""Credit estimation from per-1K-token rates in configuration."""

from __future__ import annotations

import math
import os
from typing import Mapping

from .types import TaskType

# Tasks whose rates may also be configured without a provider prefix.
_UNPREFIXED_TASKS = frozenset({TaskType.MANUAL_SUMMARY})
_LEGACY_TASK_PROVIDER = "OPENAI"


def _parse_rate(raw: str | None) -> float | None:
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _env_key(value: str) -> str:
    return value.upper().replace("-", "_")


def resolve_rate(
    env: Mapping[str, str],
    provider: str,
    direction: str,
    *,
    task: TaskType | str | None = None,
) -> float:
    """Rate for ``direction`` (``INPUT`` or ``OUTPUT``), most specific key first.

    Task-scoped keys are tried before provider-wide ones. Besides
    ``{PROVIDER}_{TASK}_...`` a task rate may come from ``{TASK}_...`` (manual
    summary only) or from ``OPENAI_{TASK}_...``, which older deployments set
    regardless of the provider in use.
    """

    suffix = f"CREDITS_PER_1K_{direction.upper()}_TOKENS"
    provider_key = _env_key(provider)
    candidates: list[str] = []
    if task is not None:
        task_key = task.config_key if isinstance(task, TaskType) else _env_key(task)
        candidates.append(f"{provider_key}_{task_key}_{suffix}")
        if task in _UNPREFIXED_TASKS:
            candidates.append(f"{task_key}_{suffix}")
        if provider_key != _LEGACY_TASK_PROVIDER:
            candidates.append(f"{_LEGACY_TASK_PROVIDER}_{task_key}_{suffix}")
    candidates.append(f"{provider_key}_{suffix}")
    candidates.append(f"LLM_{suffix}")
    for key in candidates:
        rate = _parse_rate(env.get(key))
        if rate is not None:
            return rate
    return 0.0


def estimate_llm_credits(
    provider: str,
    input_tokens: int,
    output_tokens: int,
    *,
    task: TaskType | str | None = None,
    env: Mapping[str, str] | None = None,
) -> float:
    """Estimated credits for a call; zero when no rates are configured."""

    env = os.environ if env is None else env
    rate_in = resolve_rate(env, provider, "INPUT", task=task)
    rate_out = resolve_rate(env, provider, "OUTPUT", task=task)
    total = (input_tokens / 1000) * rate_in + (output_tokens / 1000) * rate_out
    return total if math.isfinite(total) else 0.0


def estimate_qa_cost(
    provider: str,
    estimated_input_tokens: int,
    max_output_tokens: int,
    *,
    env: Mapping[str, str] | None = None,
) -> float:
    """Upper-bound pre-flight estimate for a Q&A call."""

    return estimate_llm_credits(
        provider,
        estimated_input_tokens,
        max_output_tokens,
        task=TaskType.QA,
        env=env,
    )


__all__ = ["estimate_llm_credits", "estimate_qa_cost", "resolve_rate"]
