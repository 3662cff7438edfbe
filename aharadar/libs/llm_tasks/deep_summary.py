"""Deep summaries of single content items with guidance-shaped sections."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from aharadar.libs.llm_router.types import BudgetTier, LlmRouter, ModelRef, ReasoningEffort, TaskType

from .runner import (
    Sleep,
    TaskCallResult,
    TaskSpec,
    clamp_text,
    env_int,
    env_reasoning_effort,
    execute_task,
    json_input,
    retry_note,
    task_env,
)
from .schemas import DEEP_SUMMARY_SCHEMA, DEEP_SUMMARY_VERSION, DEFAULT_SECTION_TITLES, DeepSummaryOutput

DEFAULT_MAX_INPUT_CHARS = 8000
DEFAULT_MAX_TITLE_CHARS = 240

# Output budgets grow with reasoning effort since reasoning tokens count as output.
OUTPUT_TOKENS_BY_EFFORT: dict[ReasoningEffort, int] = {
    ReasoningEffort.NONE: 700,
    ReasoningEffort.LOW: 1200,
    ReasoningEffort.MEDIUM: 2500,
    ReasoningEffort.HIGH: 5000,
}


@dataclass(slots=True)
class DeepSummaryCandidateInput:
    id: str
    source_type: str
    title: str | None = None
    body_text: str | None = None
    source_name: str | None = None
    primary_url: str | None = None
    author: str | None = None
    published_at: str | None = None
    window_start: str | None = None
    window_end: str | None = None


def max_output_tokens_for(effort: ReasoningEffort | None, override: int | None = None) -> int:
    if override is not None:
        return override
    return OUTPUT_TOKENS_BY_EFFORT[effort or ReasoningEffort.NONE]


def _guidance_block(ai_guidance: str | None) -> str:
    guidance = (ai_guidance or "").strip()
    if not guidance:
        defaults = ", ".join(f'"{title}"' for title in DEFAULT_SECTION_TITLES)
        return f"\nIf no specific guidance is given, use these default sections: {defaults}.\n"
    return (
        f'\nTopic-Specific Guidance (use this to shape your "sections" output):\n{guidance}\n\n'
        "Create section titles that match this guidance. For example, if guidance mentions "
        'bull/bear case analysis, use sections like "Bull Case" and "Bear Case" instead of generic ones.\n'
    )


def sectioned_summary_prompt(
    ref: ModelRef,
    is_retry: bool,
    *,
    kind: str,
    version: str,
    highlights_rule: str,
    ai_guidance: str | None = None,
) -> str:
    """System prompt shared by the sectioned summary tasks."""

    return (
        f"You are a strict JSON generator for {kind}.\n"
        f"{retry_note(is_retry)}\n"
        "Output must match this schema (no extra keys, no markdown):\n"
        "{\n"
        f'  "schema_version": "{version}",\n'
        f'  "prompt_id": "{version}",\n'
        f'  "provider": "{ref.provider}",\n'
        f'  "model": "{ref.model}",\n'
        '  "one_liner": "One sentence summary.",\n'
        '  "bullets": ["Key point 1", "Key point 2"],\n'
        '  "discussion_highlights": ["Notable comment 1", "Notable comment 2"],\n'
        '  "sections": [\n'
        '    { "title": "Section Title", "items": ["Point 1", "Point 2"] }\n'
        "  ]\n"
        "}\n\n"
        "Rules:\n"
        "- one_liner: A single sentence capturing the essence.\n"
        "- bullets: 2-5 key factual points from the content.\n"
        f"- discussion_highlights: {highlights_rule}\n"
        "- sections: 2-4 analysis sections. Section titles should reflect the guidance provided.\n"
        f"{_guidance_block(ai_guidance)}"
        "Be concise and factual."
    )


def build_system_prompt(ref: ModelRef, is_retry: bool, ai_guidance: str | None = None) -> str:
    return sectioned_summary_prompt(
        ref,
        is_retry,
        kind="deep summaries",
        version=DEEP_SUMMARY_VERSION,
        highlights_rule="Only include if source has comments/discussion. Extract notable viewpoints.",
        ai_guidance=ai_guidance,
    )


def build_user_prompt(candidate: DeepSummaryCandidateInput, tier: BudgetTier, env: Mapping[str, str]) -> str:
    max_body = env_int(env, "OPENAI_DEEP_SUMMARY_MAX_INPUT_CHARS", DEFAULT_MAX_INPUT_CHARS)
    max_title = env_int(env, "OPENAI_DEEP_SUMMARY_MAX_TITLE_CHARS", DEFAULT_MAX_TITLE_CHARS)
    payload: dict[str, Any] = {
        "budget_tier": BudgetTier(tier).value,
        "window_start": candidate.window_start,
        "window_end": candidate.window_end,
        "candidate": {
            "id": candidate.id,
            "source_type": candidate.source_type,
            "source_name": candidate.source_name,
            "title": clamp_text(candidate.title, max_title),
            "body_text": clamp_text(candidate.body_text, max_body),
            "primary_url": candidate.primary_url,
            "author": candidate.author,
            "published_at": candidate.published_at,
        },
    }
    return json_input(payload)


async def deep_summarize_candidate(
    router: LlmRouter,
    tier: BudgetTier,
    candidate: DeepSummaryCandidateInput,
    *,
    reasoning_effort: ReasoningEffort | str | None = None,
    ai_guidance: str | None = None,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[DeepSummaryOutput]:
    """Summarise one candidate; an explicit ``reasoning_effort`` beats configuration."""

    env = task_env(router, env)
    effort = ReasoningEffort.parse(reasoning_effort) if isinstance(reasoning_effort, str) else reasoning_effort
    if effort is None:
        effort = env_reasoning_effort(env, "OPENAI_DEEP_SUMMARY_REASONING_EFFORT")
    token_override = env_int(env, "OPENAI_DEEP_SUMMARY_MAX_OUTPUT_TOKENS", 0) or None

    spec = TaskSpec(
        task=TaskType.DEEP_SUMMARY,
        label="Deep summary",
        build_system=lambda ref, is_retry: build_system_prompt(ref, is_retry, ai_guidance),
        user=build_user_prompt(candidate, tier, env),
        normalize=DEEP_SUMMARY_SCHEMA.normalize,
        max_output_tokens=max_output_tokens_for(effort, token_override),
        reasoning_effort=effort,
    )
    return await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)


__all__ = [
    "DeepSummaryCandidateInput",
    "OUTPUT_TOKENS_BY_EFFORT",
    "build_system_prompt",
    "build_user_prompt",
    "deep_summarize_candidate",
    "max_output_tokens_for",
    "sectioned_summary_prompt",
]
