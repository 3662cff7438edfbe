"""OpenAI-compatible provider speaking the responses or chat-completions API."""

from __future__ import annotations

import re
from typing import Any

import httpx

from .rest import DEFAULT_HTTP_TIMEOUT_SECONDS, RestProvider
from .types import LlmCallResult, LlmRequest, ModelRef, ReasoningEffort, TaskType

# Ordered from least to most reasoning; used to find the nearest supported level.
_EFFORT_LADDER: tuple[str, ...] = ("none", "minimal", "low", "medium", "high")

_GPT5_NONE_CAPABLE = re.compile(r"^gpt-5\.[12](?![0-9])")
_GPT5 = re.compile(r"^gpt-5")
_O_SERIES = re.compile(r"^o[1-9]")


def supported_reasoning_efforts(model: str) -> tuple[str, ...]:
    """Reasoning levels accepted by ``model``; empty when it takes none."""

    name = model.strip().lower().rsplit("/", 1)[-1]
    if _GPT5_NONE_CAPABLE.match(name):
        return ("none", "low", "medium", "high")
    if _GPT5.match(name):
        return ("minimal", "low", "medium", "high")
    if _O_SERIES.match(name):
        return ("low", "medium", "high")
    return ()


def map_reasoning_effort(model: str, effort: ReasoningEffort | None) -> str | None:
    """Map a requested effort onto the nearest level the model supports.

    Searches upward first (so ``none`` becomes ``minimal`` where there is no
    true no-reasoning mode), then downward. Returns None when the model takes
    no reasoning parameter or no effort was requested.
    """

    if effort is None:
        return None
    supported = supported_reasoning_efforts(model)
    if not supported:
        return None
    requested = effort.value
    if requested in supported:
        return requested
    index = _EFFORT_LADDER.index(requested)
    for candidate in _EFFORT_LADDER[index + 1 :]:
        if candidate in supported:
            return candidate
    for candidate in reversed(_EFFORT_LADDER[:index]):
        if candidate in supported:
            return candidate
    return None


def is_chat_completions_endpoint(endpoint: str) -> bool:
    return "/chat/completions" in endpoint


class OpenAIProvider(RestProvider):
    """Provider for OpenAI and OpenAI-compatible HTTP endpoints."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__("openai", api_key, timeout=timeout, transport=transport)

    async def _call(
        self,
        ref: ModelRef,
        request: LlmRequest,
        *,
        task: TaskType | None,
    ) -> LlmCallResult:
        if is_chat_completions_endpoint(ref.endpoint):
            payload = self.build_chat_body(ref, request)
        else:
            payload = self.build_responses_body(ref, request)
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        body, response_headers = await self._post(ref.endpoint, headers, payload, model=ref.model)
        return self._to_result(body, response_headers, url=ref.endpoint, model=ref.model)

    @staticmethod
    def build_responses_body(ref: ModelRef, request: LlmRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": ref.model,
            "input": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.user},
            ],
            "stream": False,
        }
        if request.max_output_tokens is not None:
            payload["max_output_tokens"] = request.max_output_tokens
        effort = map_reasoning_effort(ref.model, request.reasoning_effort)
        if effort is not None:
            payload["reasoning"] = {"effort": effort}
        else:
            payload["temperature"] = request.temperature if request.temperature is not None else 0
        return payload

    @staticmethod
    def build_chat_body(ref: ModelRef, request: LlmRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": ref.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.user},
            ],
            "stream": False,
        }
        if request.max_output_tokens is not None:
            payload["max_tokens"] = request.max_output_tokens
        effort = map_reasoning_effort(ref.model, request.reasoning_effort)
        if effort is not None:
            payload["reasoning_effort"] = effort
        else:
            payload["temperature"] = request.temperature if request.temperature is not None else 0
        return payload


__all__ = [
    "OpenAIProvider",
    "is_chat_completions_endpoint",
    "map_reasoning_effort",
    "supported_reasoning_efforts",
]
