"""Aha-score triage of content candidates, one at a time or in batches."""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from pydantic import ValidationError

from aharadar.libs.llm_router.types import BudgetTier, LlmRouter, ModelRef, TaskType

from .runner import (
    NO_FENCES_NOTE,
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
from .schemas import (
    TRIAGE_BATCH_VERSION,
    TRIAGE_SCHEMA,
    TRIAGE_VERSION,
    TriageFields,
    TriageOutput,
    clean_str,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_CHARS = 4000
DEFAULT_MAX_TITLE_CHARS = 240
DEFAULT_MAX_OUTPUT_TOKENS = 250
BATCH_MAX_OUTPUT_TOKENS_CAP = 8000
BATCH_BACKOFF_SECONDS = 2.0
BATCH_JITTER_SECONDS = 2.0

_VERDICT_PROPERTIES: dict[str, Any] = {
    "aha_score": {"type": "number", "minimum": 0, "maximum": 100},
    "reason": {"type": "string"},
    "is_relevant": {"type": "boolean"},
    "is_novel": {"type": "boolean"},
    "categories": {"type": "array", "items": {"type": "string"}},
    "should_deep_summarize": {"type": "boolean"},
}
_VERDICT_REQUIRED = list(_VERDICT_PROPERTIES)

TRIAGE_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "schema_version": {"type": "string", "const": TRIAGE_VERSION},
        "prompt_id": {"type": "string", "const": TRIAGE_VERSION},
        "provider": {"type": "string"},
        "model": {"type": "string"},
        **_VERDICT_PROPERTIES,
    },
    "required": ["schema_version", "prompt_id", "provider", "model", *_VERDICT_REQUIRED],
    "additionalProperties": False,
}

TRIAGE_BATCH_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "schema_version": {"type": "string", "const": TRIAGE_BATCH_VERSION},
        "prompt_id": {"type": "string", "const": TRIAGE_BATCH_VERSION},
        "provider": {"type": "string"},
        "model": {"type": "string"},
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"id": {"type": "string"}, **_VERDICT_PROPERTIES},
                "required": ["id", *_VERDICT_REQUIRED],
                "additionalProperties": False,
            },
        },
    },
    "required": ["schema_version", "prompt_id", "provider", "model", "results"],
    "additionalProperties": False,
}

_SCORING_GUIDE = (
    "Aha score range: 0-100 (0=low-signal noise, 100=rare high-signal). "
    "Keep reason concise and topic-agnostic. Categories should be short, generic labels.\n"
)


@dataclass(slots=True)
class TriageCandidateInput:
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


@dataclass(slots=True)
class BatchTriageResult:
    """Verdicts keyed by candidate id; ids the model got wrong are absent."""

    outputs: dict[str, TriageOutput]
    item_count: int
    success_count: int
    input_tokens: int
    output_tokens: int
    cost_estimate_credits: float
    provider: str
    model: str
    endpoint: str
    dropped_ids: list[str] = field(default_factory=list)


def pinned_schema(schema: Mapping[str, Any], ref: ModelRef) -> dict[str, Any]:
    """Copy of ``schema`` with provider and model fixed to ``ref``."""

    pinned = copy.deepcopy(dict(schema))
    properties = pinned.setdefault("properties", {})
    properties["provider"] = {"type": "string", "const": ref.provider}
    properties["model"] = {"type": "string", "const": ref.model}
    return pinned


def build_system_prompt(ref: ModelRef, is_retry: bool) -> str:
    return (
        "You are a strict JSON generator for content triage.\n"
        f"{retry_note(is_retry)}\n"
        "Output must match this schema (no extra keys, no markdown, no code fences):\n"
        "{\n"
        f'  "schema_version": "{TRIAGE_VERSION}",\n'
        f'  "prompt_id": "{TRIAGE_VERSION}",\n'
        f'  "provider": "{ref.provider}",\n'
        f'  "model": "{ref.model}",\n'
        '  "aha_score": 0,\n'
        '  "reason": "Short explanation of why this is (or is not) high-signal.",\n'
        '  "is_relevant": true,\n'
        '  "is_novel": true,\n'
        '  "categories": ["topic1", "topic2"],\n'
        '  "should_deep_summarize": false\n'
        "}\n"
        f"{_SCORING_GUIDE}"
        f"{NO_FENCES_NOTE}"
    )


def build_batch_system_prompt(ref: ModelRef, is_retry: bool) -> str:
    return (
        "You are a strict JSON generator for batch content triage.\n"
        f"{retry_note(is_retry)}\n"
        "Score every candidate independently and return one result per candidate id.\n"
        "Output must match this schema (no extra keys, no markdown, no code fences):\n"
        "{\n"
        f'  "schema_version": "{TRIAGE_BATCH_VERSION}",\n'
        f'  "prompt_id": "{TRIAGE_BATCH_VERSION}",\n'
        f'  "provider": "{ref.provider}",\n'
        f'  "model": "{ref.model}",\n'
        '  "results": [\n'
        "    {\n"
        '      "id": "candidate id from the input",\n'
        '      "aha_score": 0,\n'
        '      "reason": "Short explanation of why this is (or is not) high-signal.",\n'
        '      "is_relevant": true,\n'
        '      "is_novel": true,\n'
        '      "categories": ["topic1", "topic2"],\n'
        '      "should_deep_summarize": false\n'
        "    }\n"
        "  ]\n"
        "}\n"
        f"{_SCORING_GUIDE}"
        f"{NO_FENCES_NOTE}"
    )


def _candidate_payload(candidate: TriageCandidateInput, *, max_body: int, max_title: int) -> dict[str, Any]:
    return {
        "id": candidate.id,
        "source_type": candidate.source_type,
        "source_name": candidate.source_name,
        "title": clamp_text(candidate.title, max_title),
        "body_text": clamp_text(candidate.body_text, max_body),
        "primary_url": candidate.primary_url,
        "author": candidate.author,
        "published_at": candidate.published_at,
    }


def build_user_prompt(candidate: TriageCandidateInput, tier: BudgetTier, env: Mapping[str, str]) -> str:
    payload = {
        "budget_tier": BudgetTier(tier).value,
        "window_start": candidate.window_start,
        "window_end": candidate.window_end,
        "candidate": _candidate_payload(
            candidate,
            max_body=env_int(env, "OPENAI_TRIAGE_MAX_INPUT_CHARS", DEFAULT_MAX_INPUT_CHARS),
            max_title=env_int(env, "OPENAI_TRIAGE_MAX_TITLE_CHARS", DEFAULT_MAX_TITLE_CHARS),
        ),
    }
    return json_input(payload)


def build_batch_user_prompt(
    candidates: Sequence[TriageCandidateInput],
    tier: BudgetTier,
    env: Mapping[str, str],
    *,
    window_start: str | None,
    window_end: str | None,
) -> str:
    max_body = env_int(env, "OPENAI_TRIAGE_MAX_INPUT_CHARS", DEFAULT_MAX_INPUT_CHARS)
    max_title = env_int(env, "OPENAI_TRIAGE_MAX_TITLE_CHARS", DEFAULT_MAX_TITLE_CHARS)
    payload = {
        "budget_tier": BudgetTier(tier).value,
        "window_start": window_start,
        "window_end": window_end,
        "candidate_count": len(candidates),
        "candidates": [_candidate_payload(c, max_body=max_body, max_title=max_title) for c in candidates],
    }
    return json_input(payload)


def batch_max_output_tokens(env: Mapping[str, str], item_count: int) -> int:
    """Token budget for a batch: the configured total, else 250 per item, capped."""

    default = DEFAULT_MAX_OUTPUT_TOKENS * max(item_count, 1)
    return min(env_int(env, "OPENAI_TRIAGE_BATCH_MAX_OUTPUT_TOKENS", default), BATCH_MAX_OUTPUT_TOKENS_CAP)


def normalize_triage_output(raw: Mapping[str, Any], ref: ModelRef) -> TriageOutput | None:
    return TRIAGE_SCHEMA.normalize(raw, ref)


def normalize_batch_output(
    raw: Mapping[str, Any],
    ref: ModelRef,
    expected_ids: Sequence[str],
) -> dict[str, TriageOutput] | None:
    """Per-id verdicts from a batch response; None when nothing usable remains."""

    version = clean_str(raw.get("schema_version")) or TRIAGE_BATCH_VERSION
    prompt_id = clean_str(raw.get("prompt_id")) or TRIAGE_BATCH_VERSION
    if version != TRIAGE_BATCH_VERSION or prompt_id != TRIAGE_BATCH_VERSION:
        logger.info("triage_batch unsupported_version=%s prompt_id=%s", version, prompt_id)
        return None
    results = raw.get("results")
    if not isinstance(results, list):
        return None

    wanted = set(expected_ids)
    outputs: dict[str, TriageOutput] = {}
    for entry in results:
        if not isinstance(entry, dict):
            logger.warning("triage_batch dropped_entry reason=not_an_object")
            continue
        item_id = clean_str(entry.get("id"))
        if item_id is None or item_id not in wanted:
            logger.warning("triage_batch dropped_entry id=%r reason=unknown_id", entry.get("id"))
            continue
        if item_id in outputs:
            logger.warning("triage_batch dropped_entry id=%s reason=duplicate_id", item_id)
            continue
        try:
            fields = TriageFields.model_validate(entry)
        except ValidationError as exc:
            logger.warning("triage_batch dropped_entry id=%s reason=invalid errors=%s", item_id, exc.error_count())
            continue
        outputs[item_id] = TriageOutput(provider=ref.provider, model=ref.model, **fields.model_dump())
    return outputs or None


async def triage_candidate(
    router: LlmRouter,
    tier: BudgetTier,
    candidate: TriageCandidateInput,
    *,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[TriageOutput]:
    env = task_env(router, env)
    spec = TaskSpec(
        task=TaskType.TRIAGE,
        label="Triage",
        build_system=build_system_prompt,
        user=build_user_prompt(candidate, tier, env),
        normalize=normalize_triage_output,
        max_output_tokens=env_int(env, "OPENAI_TRIAGE_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS),
        reasoning_effort=env_reasoning_effort(env, "OPENAI_TRIAGE_REASONING_EFFORT"),
        json_schema=lambda ref: pinned_schema(TRIAGE_JSON_SCHEMA, ref),
    )
    return await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)


async def triage_batch(
    router: LlmRouter,
    tier: BudgetTier,
    candidates: Sequence[TriageCandidateInput],
    *,
    window_start: str | None = None,
    window_end: str | None = None,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> BatchTriageResult:
    """Triage several candidates in one call.

    Entries with unknown or repeated ids, or that fail validation, are dropped
    on their own; the call fails only when none survive. The window defaults
    to that of the first candidate.
    """

    if not candidates:
        raise ValueError("triage_batch requires at least one candidate")
    ids = [candidate.id for candidate in candidates]
    if len(set(ids)) != len(ids):
        raise ValueError("triage_batch candidate ids must be unique")

    env = task_env(router, env)
    first = candidates[0]
    spec = TaskSpec(
        task=TaskType.TRIAGE_BATCH,
        label="Triage batch",
        build_system=build_batch_system_prompt,
        user=build_batch_user_prompt(
            candidates,
            tier,
            env,
            window_start=window_start if window_start is not None else first.window_start,
            window_end=window_end if window_end is not None else first.window_end,
        ),
        normalize=lambda raw, ref: normalize_batch_output(raw, ref, ids),
        max_output_tokens=batch_max_output_tokens(env, len(candidates)),
        reasoning_effort=env_reasoning_effort(env, "OPENAI_TRIAGE_REASONING_EFFORT"),
        json_schema=lambda ref: pinned_schema(TRIAGE_BATCH_JSON_SCHEMA, ref),
        backoff_seconds=BATCH_BACKOFF_SECONDS,
        jitter_seconds=BATCH_JITTER_SECONDS,
    )
    result = await execute_task(router, spec, tier, env=env, sleep=sleep, rng=rng)
    dropped = [item_id for item_id in ids if item_id not in result.output]
    if dropped:
        logger.warning(
            "llm_task=triage_batch provider=%s model=%s items=%s missing=%s",
            result.provider,
            result.model,
            len(ids),
            len(dropped),
        )
    return BatchTriageResult(
        outputs=result.output,
        item_count=len(ids),
        success_count=len(result.output),
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        cost_estimate_credits=result.cost_estimate_credits,
        provider=result.provider,
        model=result.model,
        endpoint=result.endpoint,
        dropped_ids=dropped,
    )


__all__ = [
    "BatchTriageResult",
    "TRIAGE_BATCH_JSON_SCHEMA",
    "TRIAGE_JSON_SCHEMA",
    "TriageCandidateInput",
    "batch_max_output_tokens",
    "build_batch_system_prompt",
    "build_system_prompt",
    "normalize_batch_output",
    "normalize_triage_output",
    "pinned_schema",
    "triage_batch",
    "triage_candidate",
]
