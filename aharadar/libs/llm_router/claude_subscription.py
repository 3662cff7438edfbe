"""Claude subscription provider driven through the Claude Agent SDK.

Uses the credentials of a logged-in Claude CLI rather than an API key. The
SDK does not report billed tokens, so results always carry zero counts and
each successful call is recorded against the hourly subscription quota.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Mapping

from claude_agent_sdk import ClaudeAgentOptions, query
from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from aharadar.libs.quota.store import CLAUDE, UsageStore

from .base import BaseProvider
from .errors import LlmError, LlmProviderError
from .types import LlmCallResult, LlmRequest, ModelRef, TaskType

CLAUDE_SUBSCRIPTION_ENDPOINT = "claude-subscription"
DEFAULT_MAX_TURNS = 2
STRUCTURED_OUTPUT_TOOL = "StructuredOutput"
THINKING_HINT = (
    "IMPORTANT: Think step-by-step before providing your final answer. "
    "Consider multiple perspectives and potential edge cases."
)

QueryFn = Callable[..., AsyncIterator[Any]]


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _message_kind(message: Any) -> str | None:
    kind = _field(message, "type")
    if isinstance(kind, str):
        return kind
    name = type(message).__name__
    if name == "AssistantMessage":
        return "assistant"
    if name == "ResultMessage":
        return "result"
    return None


def _block_kind(block: Any) -> str | None:
    kind = _field(block, "type")
    if isinstance(kind, str):
        return kind
    name = type(block).__name__
    if name == "TextBlock":
        return "text"
    if name == "ToolUseBlock":
        return "tool_use"
    return None


def collect_sdk_output(messages: list[Any]) -> tuple[str, Any]:
    """Fold streamed SDK messages into (text, structured_output).

    Later messages win, and a final result message overrides anything seen
    in assistant turns.
    """

    text = ""
    structured: Any = None
    for message in messages:
        kind = _message_kind(message)
        if kind == "assistant":
            content = _field(message, "content")
            if content is None:
                content = _field(_field(message, "message"), "content")
            for block in content or []:
                block_kind = _block_kind(block)
                if block_kind == "text" and isinstance(_field(block, "text"), str):
                    text = _field(block, "text")
                elif block_kind == "tool_use" and _field(block, "name") == STRUCTURED_OUTPUT_TOOL:
                    tool_input = _field(block, "input")
                    if tool_input:
                        structured = tool_input
        elif kind == "result":
            result = _field(message, "result")
            if isinstance(result, str) and result:
                text = result
            result_structured = _field(message, "structured_output")
            if result_structured is not None:
                structured = result_structured
    return text, structured


class ClaudeSubscriptionProvider(BaseProvider):
    """Provider that runs a short, tool-less Agent SDK session."""

    def __init__(
        self,
        *,
        usage_store: UsageStore | None = None,
        triage_thinking: bool = False,
        max_turns: int = DEFAULT_MAX_TURNS,
        query_fn: QueryFn | None = None,
        options_factory: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(name="claude-subscription")
        self._usage_store = usage_store
        self._triage_thinking = triage_thinking
        self._max_turns = max_turns
        self._query = query_fn or query
        self._options_factory = options_factory or ClaudeAgentOptions
        self._logger = logging.getLogger(__name__)

    def _system_prompt(self, request: LlmRequest, task: TaskType | None) -> str:
        if self._triage_thinking and task in (TaskType.TRIAGE, TaskType.TRIAGE_BATCH):
            return f"{request.system}\n\n{THINKING_HINT}"
        return request.system

    def _options(self, ref: ModelRef, request: LlmRequest, task: TaskType | None) -> Any:
        kwargs: dict[str, Any] = {
            "model": ref.model,
            "system_prompt": self._system_prompt(request, task),
            "allowed_tools": [],
            "max_turns": self._max_turns,
        }
        if request.json_schema:
            kwargs["output_format"] = {"type": "json_schema", "schema": dict(request.json_schema)}
        return self._options_factory(**kwargs)

    async def _call(
        self,
        ref: ModelRef,
        request: LlmRequest,
        *,
        task: TaskType | None,
    ) -> LlmCallResult:
        options = self._options(ref, request, task)
        messages: list[Any] = []
        try:
            async for message in self._query(prompt=request.user, options=options):
                messages.append(message)
        except LlmError:
            raise
        except Exception as exc:
            self._logger.warning("provider=%s model=%s sdk_error=%s", self.name, ref.model, exc)
            raise LlmProviderError(
                f"Claude subscription call failed: {exc}",
                provider=self.name,
                endpoint=CLAUDE_SUBSCRIPTION_ENDPOINT,
                model=ref.model,
            ) from exc

        if self._usage_store is not None:
            self._usage_store.record_usage(CLAUDE, calls=1)

        text, structured = collect_sdk_output(messages)
        if structured is not None and not self._structured_is_valid(structured, request.json_schema):
            structured = None

        output_text = text.strip()
        if isinstance(structured, (dict, list)):
            output_text = json.dumps(structured, ensure_ascii=False)
        if not output_text and structured is None:
            self._logger.warning(
                "provider=%s model=%s empty_output message_types=%s",
                self.name,
                ref.model,
                [_message_kind(message) or type(message).__name__ for message in messages],
            )

        return LlmCallResult(
            output_text=output_text,
            raw_response=messages,
            input_tokens=0,
            output_tokens=0,
            endpoint=CLAUDE_SUBSCRIPTION_ENDPOINT,
            structured_output=structured,
        )

    def _structured_is_valid(self, structured: Any, schema: Mapping[str, Any] | None) -> bool:
        if not schema:
            return True
        try:
            validator = Draft7Validator(dict(schema))
        except SchemaError:
            self._logger.warning("provider=%s invalid_json_schema", self.name)
            return True
        error = next(iter(validator.iter_errors(structured)), None)
        if error is not None:
            self._logger.warning(
                "provider=%s structured_output_invalid detail=%s", self.name, error.message
            )
            return False
        return True


__all__ = [
    "CLAUDE_SUBSCRIPTION_ENDPOINT",
    "ClaudeSubscriptionProvider",
    "THINKING_HINT",
    "collect_sdk_output",
]
