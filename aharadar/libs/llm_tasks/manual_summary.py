"""Summaries of user-pasted content."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Mapping

from aharadar.libs.llm_router.types import BudgetTier, LlmRouter, ModelRef, ReasoningEffort, TaskType

from .deep_summary import max_output_tokens_for, sectioned_summary_prompt
from .runner import (
    Sleep,
    TaskCallResult,
    TaskSpec,
    clamp_text,
    env_int,
    env_reasoning_effort,
    execute_task,
    json_input,
    task_env,
)
from .schemas import MANUAL_SUMMARY_SCHEMA, MANUAL_SUMMARY_VERSION, ManualSummaryOutput

DEFAULT_MAX_INPUT_CHARS = 100_000
DEFAULT_MAX_TITLE_CHARS = 240


@dataclass(slots=True)
class ManualSummaryInput:
    pasted_text: str
    title: str | None = None
    author: str | None = None
    url: str | None = None
    source_type: str | None = None


def build_system_prompt(ref: ModelRef, is_retry: bool, ai_guidance: str | None = None) -> str:
    return sectioned_summary_prompt(
        ref,
        is_retry,
        kind="content summaries",
        version=MANUAL_SUMMARY_VERSION,
        highlights_rule=(
            "Only include if content has comments/discussion. Extract notable viewpoints. "
            "Otherwise empty array."
        ),
        ai_guidance=ai_guidance,
    )


def build_user_prompt(item: ManualSummaryInput, tier: BudgetTier, env: Mapping[str, str]) -> str:
    max_body = env_int(env, "MANUAL_SUMMARY_MAX_INPUT_CHARS", DEFAULT_MAX_INPUT_CHARS)
    max_title = env_int(env, "MANUAL_SUMMARY_MAX_TITLE_CHARS", DEFAULT_MAX_TITLE_CHARS)
    payload = {
        "budget_tier": BudgetTier(tier).value,
        "metadata": {
            "title": clamp_text(item.title, max_title),
            "author": item.author,
            "url": item.url,
            "source_type": item.source_type,
        },
        "pasted_content": clamp_text(item.pasted_text, max_body),
    }
    return json_input(payload)


async def manual_summarize(
    router: LlmRouter,
    tier: BudgetTier,
    item: ManualSummaryInput,
    *,
    reasoning_effort: ReasoningEffort | str | None = None,
    ai_guidance: str | None = None,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[ManualSummaryOutput]:
    """Summarise pasted text, routed and billed through the deep summary models.

    Non-JSON output that reads like a login or credential failure surfaces as
    ``LlmAuthError`` so callers can prompt a re-login.
    """

    env = task_env(router, env)
    effort = ReasoningEffort.parse(reasoning_effort) if isinstance(reasoning_effort, str) else reasoning_effort
    if effort is None:
        effort = env_reasoning_effort(env, "MANUAL_SUMMARY_REASONING_EFFORT")
    token_override = env_int(env, "MANUAL_SUMMARY_MAX_OUTPUT_TOKENS", 0) or None

    spec = TaskSpec(
        task=TaskType.DEEP_SUMMARY,
        label="Manual summary",
        build_system=lambda ref, is_retry: build_system_prompt(ref, is_retry, ai_guidance),
        user=build_user_prompt(item, tier, env),
        normalize=MANUAL_SUMMARY_SCHEMA.normalize,
        max_output_tokens=max_output_tokens_for(effort, token_override),
        reasoning_effort=effort,
        cost_task=TaskType.MANUAL_SUMMARY,
        check_auth=True,
    )
    return await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)


__all__ = ["ManualSummaryInput", "build_system_prompt", "build_user_prompt", "manual_summarize"]
