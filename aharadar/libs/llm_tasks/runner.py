"""Shared execution path for JSON-producing LLM tasks."""

from __future__ import annotations

import asyncio
import logging
import os
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar

from aharadar.libs.json_utils import compact_json, extract_json_object
from aharadar.libs.llm_router.costs import estimate_llm_credits
from aharadar.libs.llm_router.errors import (
    InvalidJsonOutputError,
    LlmAuthError,
    LlmConfigError,
    SchemaValidationError,
    is_auth_like_message,
    is_llm_auth_error,
    is_quota_error,
)
from aharadar.libs.llm_router.types import (
    BudgetTier,
    LlmCallResult,
    LlmRequest,
    LlmRouter,
    ModelRef,
    ReasoningEffort,
    TaskType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
OutputT = TypeVar("OutputT")

RETRY_NOTE = "The previous response was invalid. Fix it and return ONLY the JSON object."
STRICT_NOTE = "Return ONLY the JSON object."
NO_FENCES_NOTE = "IMPORTANT: Output raw JSON only. Do NOT wrap in markdown code blocks."

DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_JITTER_SECONDS = 1.0

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(slots=True)
class TaskCallResult(Generic[OutputT]):
    """Validated task output plus usage and attribution for the call."""

    output: OutputT
    input_tokens: int
    output_tokens: int
    cost_estimate_credits: float
    provider: str
    model: str
    endpoint: str


def task_env(router: Any, env: Mapping[str, str] | None = None) -> Mapping[str, str]:
    """Configuration mapping for a task: explicit, the router's, or the process env."""

    if env is not None:
        return env
    router_env = getattr(router, "env", None)
    return router_env if isinstance(router_env, Mapping) else os.environ


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(float(str(raw).strip()))
    except ValueError:
        return default
    return value if value > 0 else default


def env_reasoning_effort(env: Mapping[str, str], *names: str) -> ReasoningEffort | None:
    """First recognised effort among ``names``; unknown values are ignored."""

    for name in names:
        effort = ReasoningEffort.parse(env.get(name))
        if effort is not None:
            return effort
    return None


def clamp_text(value: Any, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped if len(stripped) <= max_chars else stripped[:max_chars]


def retry_note(is_retry: bool) -> str:
    return RETRY_NOTE if is_retry else STRICT_NOTE


def json_input(payload: Any) -> str:
    return f"Input JSON:\n{compact_json(payload)}"


def is_retryable_error(exc: BaseException) -> bool:
    """Config, quota and auth failures fail the same way on a second attempt."""

    if isinstance(exc, (LlmConfigError, LlmAuthError)):
        return False
    return not (is_quota_error(exc) or is_llm_auth_error(exc))


async def run_with_single_retry(
    attempt: Callable[[bool], Awaitable[T]],
    *,
    label: str,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    jitter_seconds: float = DEFAULT_JITTER_SECONDS,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Run ``attempt(False)``; on a retryable failure wait and run ``attempt(True)`` once."""

    try:
        return await attempt(False)
    except Exception as exc:
        if not is_retryable_error(exc):
            raise
        delay = backoff_seconds + rng() * jitter_seconds
        logger.warning(
            "llm_task=%s attempt=1 failed error_type=%s error=%s retry_in=%.2fs",
            label,
            type(exc).__name__,
            exc,
            delay,
        )
    await sleep(delay)
    return await attempt(True)


def parse_call_output(
    call: LlmCallResult,
    *,
    label: str,
    check_auth: bool = False,
) -> dict[str, Any]:
    """JSON object carried by ``call``; structured output wins over text."""

    if isinstance(call.structured_output, dict):
        return call.structured_output
    parsed = extract_json_object(call.output_text)
    if parsed is not None:
        return parsed
    preview = call.output_text[:500]
    logger.error(
        "llm_task=%s invalid_json endpoint=%s output_chars=%s preview=%r",
        label,
        call.endpoint,
        len(call.output_text),
        preview,
    )
    if check_auth and is_auth_like_message(call.output_text):
        raise LlmAuthError()
    raise InvalidJsonOutputError(f"{label} output is not valid JSON")


@dataclass(frozen=True)
class TaskSpec(Generic[OutputT]):
    """Everything that differs between one JSON task and the next."""

    task: TaskType
    label: str
    build_system: Callable[[ModelRef, bool], str]
    user: str
    normalize: Callable[[Mapping[str, Any], ModelRef], OutputT | None]
    max_output_tokens: int | None = None
    reasoning_effort: ReasoningEffort | None = None
    json_schema: Callable[[ModelRef], Mapping[str, Any]] | None = None
    cost_task: TaskType | str | None = None
    check_auth: bool = False
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    jitter_seconds: float = DEFAULT_JITTER_SECONDS


async def execute_task(
    router: LlmRouter,
    spec: TaskSpec[OutputT],
    tier: BudgetTier,
    *,
    env: Mapping[str, str] | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> TaskCallResult[OutputT]:
    """Route, call, parse and validate ``spec`` with at most one retry."""

    env = task_env(router, env)

    async def attempt(is_retry: bool) -> TaskCallResult[OutputT]:
        ref = router.choose_model(spec.task, tier)
        request = LlmRequest(
            system=spec.build_system(ref, is_retry),
            user=spec.user,
            max_output_tokens=spec.max_output_tokens,
            reasoning_effort=spec.reasoning_effort,
            json_schema=spec.json_schema(ref) if spec.json_schema is not None else None,
        )
        call = await router.call(spec.task, ref, request)
        parsed = parse_call_output(call, label=spec.label, check_auth=spec.check_auth)
        output = spec.normalize(parsed, ref)
        if output is None:
            logger.error(
                "llm_task=%s schema_validation_failed provider=%s model=%s keys=%s",
                spec.label,
                ref.provider,
                ref.model,
                sorted(parsed.keys()),
            )
            raise SchemaValidationError(f"{spec.label} output failed schema validation")
        credits = estimate_llm_credits(
            ref.provider,
            call.input_tokens,
            call.output_tokens,
            task=spec.cost_task if spec.cost_task is not None else spec.task,
            env=env,
        )
        return TaskCallResult(
            output=output,
            input_tokens=call.input_tokens,
            output_tokens=call.output_tokens,
            cost_estimate_credits=credits,
            provider=ref.provider,
            model=ref.model,
            endpoint=call.endpoint,
        )

    return await run_with_single_retry(
        attempt,
        label=spec.label,
        backoff_seconds=spec.backoff_seconds,
        jitter_seconds=spec.jitter_seconds,
        sleep=sleep,
        rng=rng,
    )


__all__ = [
    "NO_FENCES_NOTE",
    "RETRY_NOTE",
    "STRICT_NOTE",
    "TaskCallResult",
    "TaskSpec",
    "clamp_text",
    "env_int",
    "env_reasoning_effort",
    "execute_task",
    "is_retryable_error",
    "json_input",
    "parse_call_output",
    "retry_note",
    "run_with_single_retry",
    "task_env",
]
