"""Catch-up packs: pick items for a time budget, then tier and theme them."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

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
from .schemas import (
    CATCHUP_PACK_SCHEMA,
    CATCHUP_PACK_SELECT_SCHEMA,
    CATCHUP_PACK_SELECT_VERSION,
    CATCHUP_PACK_VERSION,
    CatchupPackOutput,
    CatchupPackSelectOutput,
)
from .triage import pinned_schema

DEFAULT_SELECT_MAX_OUTPUT_TOKENS = 1200
DEFAULT_TIER_MAX_OUTPUT_TOKENS = 1800
DEFAULT_MAX_SNIPPET_CHARS = 200
DEFAULT_MAX_TITLE_CHARS = 180

_SELECTION_EXAMPLE = '{ "item_id": "id", "why": "short reason", "theme": "short theme" }'

_SELECTION_ITEM: dict[str, Any] = {
    "type": "object",
    "properties": {"item_id": {"type": "string"}, "why": {"type": "string"}, "theme": {"type": "string"}},
    "required": ["item_id", "why", "theme"],
    "additionalProperties": False,
}
_SELECTION_LIST: dict[str, Any] = {"type": "array", "items": _SELECTION_ITEM}

CATCHUP_PACK_SELECT_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "schema_version": {"type": "string", "const": CATCHUP_PACK_SELECT_VERSION},
        "prompt_id": {"type": "string", "const": CATCHUP_PACK_SELECT_VERSION},
        "provider": {"type": "string"},
        "model": {"type": "string"},
        "selections": _SELECTION_LIST,
    },
    "required": ["schema_version", "prompt_id", "provider", "model", "selections"],
    "additionalProperties": False,
}

CATCHUP_PACK_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "schema_version": {"type": "string", "const": CATCHUP_PACK_VERSION},
        "prompt_id": {"type": "string", "const": CATCHUP_PACK_VERSION},
        "provider": {"type": "string"},
        "model": {"type": "string"},
        "time_budget_minutes": {"type": "number"},
        "tiers": {
            "type": "object",
            "properties": {
                "must_read": _SELECTION_LIST,
                "worth_scanning": _SELECTION_LIST,
                "headlines": _SELECTION_LIST,
            },
            "required": ["must_read", "worth_scanning", "headlines"],
            "additionalProperties": False,
        },
        "themes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "summary": {"type": "string"},
                    "item_ids": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["title", "summary", "item_ids"],
                "additionalProperties": False,
            },
        },
        "notes": {"type": ["string", "null"]},
    },
    "required": ["schema_version", "prompt_id", "provider", "model", "time_budget_minutes", "tiers", "themes"],
    "additionalProperties": False,
}


@dataclass(slots=True)
class CatchupPackCandidate:
    item_id: str
    source_type: str
    aha_score: float
    title: str | None = None
    body_snippet: str | None = None
    triage_reason: str | None = None
    ai_score: float | None = None
    author: str | None = None
    published_at: str | None = None
    # Filled in from the selection pass before tiering.
    why: str | None = None
    theme: str | None = None


@dataclass(slots=True)
class CatchupPackSelectInput:
    time_budget_minutes: float
    min_select: int
    max_select: int
    items: Sequence[CatchupPackCandidate]


@dataclass(slots=True)
class CatchupPackTargets:
    must_read: int
    worth_scanning: int
    headlines: int


@dataclass(slots=True)
class CatchupPackTierInput:
    time_budget_minutes: float
    targets: CatchupPackTargets
    items: Sequence[CatchupPackCandidate] = field(default_factory=list)


def build_select_system_prompt(ref: ModelRef, is_retry: bool) -> str:
    return (
        "You are a strict JSON generator for listwise catch-up pack selection.\n"
        f"{retry_note(is_retry)}\n"
        "Output must match this schema (no extra keys, no markdown, no code fences):\n"
        "{\n"
        f'  "schema_version": "{CATCHUP_PACK_SELECT_VERSION}",\n'
        f'  "prompt_id": "{CATCHUP_PACK_SELECT_VERSION}",\n'
        f'  "provider": "{ref.provider}",\n'
        f'  "model": "{ref.model}",\n'
        '  "selections": [\n'
        f"    {_SELECTION_EXAMPLE}\n"
        "  ]\n"
        "}\n"
        "Select the most valuable items for the time budget, balancing score, recency, and diversity.\n"
        "Prefer diverse sources/authors. Keep reasons concise and topic-agnostic.\n"
        f"{NO_FENCES_NOTE}"
    )


def build_tier_system_prompt(ref: ModelRef, is_retry: bool) -> str:
    return (
        "You are creating a catch-up briefing for a busy person who missed recent updates.\n"
        f"{retry_note(is_retry)}\n"
        "Output must match this schema (no extra keys, no markdown, no code fences):\n"
        "{\n"
        f'  "schema_version": "{CATCHUP_PACK_VERSION}",\n'
        f'  "prompt_id": "{CATCHUP_PACK_VERSION}",\n'
        f'  "provider": "{ref.provider}",\n'
        f'  "model": "{ref.model}",\n'
        '  "time_budget_minutes": 60,\n'
        '  "tiers": {\n'
        f'    "must_read": [{_SELECTION_EXAMPLE}],\n'
        f'    "worth_scanning": [{_SELECTION_EXAMPLE}],\n'
        f'    "headlines": [{_SELECTION_EXAMPLE}]\n'
        "  },\n"
        '  "themes": [{ "title": "Theme Name", "summary": "What happened and why it matters", "item_ids": ["id"] }],\n'
        '  "notes": "Executive summary of key developments"\n'
        "}\n\n"
        "CRITICAL - Write for a normal person, NOT a technical system:\n"
        "- notes: Write 2-3 sentences summarizing the most important developments. What happened? "
        "What should they know? Write like a friend catching them up, not a robot describing categories.\n"
        "- themes: Group related items by what's happening (e.g. 'Fed Policy Shift', 'Tech Earnings'). "
        "Summary should explain the story, not list items.\n"
        "- why: For each item, explain why it matters to them in plain language.\n\n"
        "Assign items into tiers: must_read for truly important, worth_scanning for useful context, "
        "headlines for awareness.\n"
        f"{NO_FENCES_NOTE}"
    )


def _caps(env: Mapping[str, str]) -> tuple[int, int]:
    return (
        env_int(env, "OPENAI_CATCHUP_PACK_MAX_SNIPPET_CHARS", DEFAULT_MAX_SNIPPET_CHARS),
        env_int(env, "OPENAI_CATCHUP_PACK_MAX_TITLE_CHARS", DEFAULT_MAX_TITLE_CHARS),
    )


def _candidate_payload(
    item: CatchupPackCandidate,
    *,
    max_snippet: int,
    max_title: int,
    with_selection: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "item_id": item.item_id,
        "title": clamp_text(item.title, max_title),
        "body_snippet": clamp_text(item.body_snippet, max_snippet),
        "triage_reason": item.triage_reason,
        "ai_score": item.ai_score,
        "aha_score": item.aha_score,
        "source_type": item.source_type,
        "author": item.author,
        "published_at": item.published_at,
    }
    if with_selection:
        payload["why"] = item.why
        payload["theme"] = item.theme
    return payload


def build_select_user_prompt(data: CatchupPackSelectInput, tier: BudgetTier, env: Mapping[str, str]) -> str:
    max_snippet, max_title = _caps(env)
    items = [_candidate_payload(item, max_snippet=max_snippet, max_title=max_title) for item in data.items]
    payload = {
        "budget_tier": BudgetTier(tier).value,
        "time_budget_minutes": data.time_budget_minutes,
        "min_select": data.min_select,
        "max_select": data.max_select,
        "item_count": len(items),
        "items": items,
    }
    return json_input(payload)


def build_tier_user_prompt(data: CatchupPackTierInput, tier: BudgetTier, env: Mapping[str, str]) -> str:
    max_snippet, max_title = _caps(env)
    items = [
        _candidate_payload(item, max_snippet=max_snippet, max_title=max_title, with_selection=True)
        for item in data.items
    ]
    payload = {
        "budget_tier": BudgetTier(tier).value,
        "time_budget_minutes": data.time_budget_minutes,
        "targets": {
            "must_read": data.targets.must_read,
            "worth_scanning": data.targets.worth_scanning,
            "headlines": data.targets.headlines,
        },
        "item_count": len(items),
        "items": items,
    }
    return json_input(payload)


async def select_catchup_pack(
    router: LlmRouter,
    tier: BudgetTier,
    data: CatchupPackSelectInput,
    *,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[CatchupPackSelectOutput]:
    env = task_env(router, env)
    spec = TaskSpec(
        task=TaskType.CATCHUP_PACK_SELECT,
        label="Catch-up pack select",
        build_system=build_select_system_prompt,
        user=build_select_user_prompt(data, tier, env),
        normalize=CATCHUP_PACK_SELECT_SCHEMA.normalize,
        json_schema=lambda ref: pinned_schema(CATCHUP_PACK_SELECT_JSON_SCHEMA, ref),
        max_output_tokens=env_int(
            env, "OPENAI_CATCHUP_PACK_SELECT_MAX_OUTPUT_TOKENS", DEFAULT_SELECT_MAX_OUTPUT_TOKENS
        ),
    )
    return await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)


async def tier_catchup_pack(
    router: LlmRouter,
    tier: BudgetTier,
    data: CatchupPackTierInput,
    *,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[CatchupPackOutput]:
    """Tier selected items; the output echoes the requested time budget."""

    env = task_env(router, env)
    spec = TaskSpec(
        task=TaskType.CATCHUP_PACK_TIER,
        label="Catch-up pack tier",
        build_system=build_tier_system_prompt,
        user=build_tier_user_prompt(data, tier, env),
        normalize=lambda raw, ref: CATCHUP_PACK_SCHEMA.normalize(
            raw, ref, time_budget_minutes=data.time_budget_minutes
        ),
        json_schema=lambda ref: pinned_schema(CATCHUP_PACK_JSON_SCHEMA, ref),
        max_output_tokens=env_int(env, "OPENAI_CATCHUP_PACK_TIER_MAX_OUTPUT_TOKENS", DEFAULT_TIER_MAX_OUTPUT_TOKENS),
    )
    return await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)


__all__ = [
    "CATCHUP_PACK_JSON_SCHEMA",
    "CATCHUP_PACK_SELECT_JSON_SCHEMA",
    "CatchupPackCandidate",
    "CatchupPackSelectInput",
    "CatchupPackTargets",
    "CatchupPackTierInput",
    "build_select_system_prompt",
    "build_select_user_prompt",
    "build_tier_system_prompt",
    "build_tier_user_prompt",
    "select_catchup_pack",
    "tier_catchup_pack",
]
