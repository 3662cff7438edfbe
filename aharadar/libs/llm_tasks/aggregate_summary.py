"""Summaries across many items: a digest, an inbox, or a time range."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Sequence

from aharadar.libs.llm_router.types import BudgetTier, LlmRouter, ModelRef, TaskType

from .runner import (
    NO_FENCES_NOTE,
    Sleep,
    TaskCallResult,
    TaskSpec,
    clamp_text,
    env_int,
    execute_task,
    json_input,
    retry_note,
    task_env,
)
from .schemas import AGGREGATE_SUMMARY_SCHEMA, AGGREGATE_SUMMARY_VERSION, AggregateSummaryOutput

ScopeType = Literal["digest", "inbox", "range", "custom"]

DEFAULT_MAX_OUTPUT_TOKENS = 2000
DEFAULT_MAX_SNIPPET_CHARS = 500
DEFAULT_MAX_TITLE_CHARS = 240


@dataclass(slots=True)
class ClusterMember:
    title: str | None
    source_type: str


@dataclass(slots=True)
class AggregateSummaryItem:
    item_id: str
    source_type: str
    aha_score: float
    title: str | None = None
    body_snippet: str | None = None
    triage_reason: str | None = None
    ai_score: float | None = None
    published_at: str | None = None
    url: str | None = None
    cluster_member_count: int | None = None
    cluster_members: list[ClusterMember] = field(default_factory=list)


@dataclass(slots=True)
class AggregateSummaryInput:
    items: Sequence[AggregateSummaryItem]
    scope_type: ScopeType
    window_start: str | None = None
    window_end: str | None = None


def build_system_prompt(ref: ModelRef, is_retry: bool) -> str:
    return (
        "You are an expert content analyst and JSON generator for aggregate summaries.\n"
        f"{retry_note(is_retry)}\n"
        "Return ONLY the JSON object (no markdown, no extra keys, no code fences).\n"
        "Output must match this schema:\n"
        "{\n"
        f'  "schema_version": "{AGGREGATE_SUMMARY_VERSION}",\n'
        f'  "prompt_id": "{AGGREGATE_SUMMARY_VERSION}",\n'
        f'  "provider": "{ref.provider}",\n'
        f'  "model": "{ref.model}",\n'
        '  "one_liner": "Single sentence summary.",\n'
        '  "overview": "Paragraph overview of key themes.",\n'
        '  "sentiment": {\n'
        '    "label": "positive|neutral|negative",\n'
        '    "confidence": 0.85,\n'
        '    "rationale": "Why this sentiment"\n'
        "  },\n"
        '  "themes": [\n'
        '    { "title": "Theme name", "summary": "What this theme is about", "item_ids": ["id1", "id2"] }\n'
        "  ],\n"
        '  "notable_items": [\n'
        '    { "item_id": "id", "why": "Why this item is notable" }\n'
        "  ],\n"
        '  "open_questions": ["Question 1"],\n'
        '  "suggested_followups": ["Followup 1"]\n'
        "}\n"
        "Be topic-agnostic, mention cluster sizes when present, and cite specific item IDs.\n"
        f"{NO_FENCES_NOTE}"
    )


def _item_payload(item: AggregateSummaryItem, *, max_snippet: int, max_title: int) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "item_id": item.item_id,
        "source_type": item.source_type,
        "title": clamp_text(item.title, max_title),
        "body_snippet": clamp_text(item.body_snippet, max_snippet),
        "triage_reason": item.triage_reason,
        "ai_score": item.ai_score,
        "aha_score": item.aha_score,
        "published_at": item.published_at,
        "url": item.url,
    }
    if item.cluster_member_count is not None:
        payload["cluster_member_count"] = item.cluster_member_count
    if item.cluster_members:
        payload["cluster_members"] = [
            {"title": member.title, "source_type": member.source_type} for member in item.cluster_members
        ]
    return payload


def build_user_prompt(data: AggregateSummaryInput, tier: BudgetTier, env: Mapping[str, str]) -> str:
    max_snippet = env_int(env, "OPENAI_AGGREGATE_SUMMARY_MAX_SNIPPET_CHARS", DEFAULT_MAX_SNIPPET_CHARS)
    max_title = env_int(env, "OPENAI_AGGREGATE_SUMMARY_MAX_TITLE_CHARS", DEFAULT_MAX_TITLE_CHARS)
    payload = {
        "budget_tier": BudgetTier(tier).value,
        "scope_type": data.scope_type,
        "window_start": data.window_start,
        "window_end": data.window_end,
        "item_count": len(data.items),
        "items": [_item_payload(item, max_snippet=max_snippet, max_title=max_title) for item in data.items],
    }
    return json_input(payload)


async def aggregate_summary(
    router: LlmRouter,
    tier: BudgetTier,
    data: AggregateSummaryInput,
    *,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[AggregateSummaryOutput]:
    env = task_env(router, env)
    spec = TaskSpec(
        task=TaskType.AGGREGATE_SUMMARY,
        label="Aggregate summary",
        build_system=build_system_prompt,
        user=build_user_prompt(data, tier, env),
        normalize=AGGREGATE_SUMMARY_SCHEMA.normalize,
        max_output_tokens=env_int(env, "OPENAI_AGGREGATE_SUMMARY_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS),
    )
    return await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)


__all__ = [
    "AggregateSummaryInput",
    "AggregateSummaryItem",
    "ClusterMember",
    "aggregate_summary",
    "build_system_prompt",
    "build_user_prompt",
]
