"""Anthropic messages API provider."""

from __future__ import annotations

import re
from typing import Any

import httpx

from .rest import DEFAULT_HTTP_TIMEOUT_SECONDS, RestProvider
from .types import LlmCallResult, LlmRequest, ModelRef, ReasoningEffort, TaskType

ANTHROPIC_MESSAGES_ENDPOINT = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096

THINKING_BUDGETS: dict[ReasoningEffort, int] = {
    ReasoningEffort.LOW: 1024,
    ReasoningEffort.MEDIUM: 4096,
    ReasoningEffort.HIGH: 16384,
}

_THINKING_MODELS = re.compile(r"claude-(3-7-sonnet|sonnet-4|opus-4|haiku-4|(sonnet|opus|haiku)-[4-9])")


def supports_thinking(model: str) -> bool:
    return bool(_THINKING_MODELS.search(model.lower()))


def thinking_budget(model: str, effort: ReasoningEffort | None) -> int | None:
    """Extended-thinking budget for ``effort``; None downgrades to no thinking."""

    if effort is None or effort is ReasoningEffort.NONE:
        return None
    if not supports_thinking(model):
        return None
    return THINKING_BUDGETS[effort]


class AnthropicProvider(RestProvider):
    """Provider for the Anthropic messages API."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__("anthropic", api_key, timeout=timeout, transport=transport)

    async def _call(
        self,
        ref: ModelRef,
        request: LlmRequest,
        *,
        task: TaskType | None,
    ) -> LlmCallResult:
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = self.build_body(ref, request)
        body, response_headers = await self._post(ref.endpoint, headers, payload, model=ref.model)
        return self._to_result(body, response_headers, url=ref.endpoint, model=ref.model)

    @staticmethod
    def build_body(ref: ModelRef, request: LlmRequest) -> dict[str, Any]:
        max_tokens = request.max_output_tokens if request.max_output_tokens is not None else DEFAULT_MAX_TOKENS
        payload: dict[str, Any] = {
            "model": ref.model,
            "max_tokens": max_tokens,
            "system": request.system,
            "messages": [{"role": "user", "content": request.user}],
        }
        budget = thinking_budget(ref.model, request.reasoning_effort)
        if budget is not None:
            # The thinking budget counts against max_tokens and must stay below it.
            payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
            payload["max_tokens"] = max_tokens + budget
        else:
            payload["temperature"] = request.temperature if request.temperature is not None else 0
        return payload


__all__ = [
    "ANTHROPIC_MESSAGES_ENDPOINT",
    "AnthropicProvider",
    "supports_thinking",
    "thinking_budget",
]
