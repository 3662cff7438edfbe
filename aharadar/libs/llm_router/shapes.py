"""Response-shape matchers shared by the HTTP provider adapters.

Providers answer in several layouts. Each matcher below understands exactly
one of them and returns ``None`` when the payload does not fit. Matchers are
tried in order and the first non-empty text wins; supporting a new layout
means appending a matcher to ``TEXT_SHAPES``.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping, Sequence

SNIPPET_MAX_CHARS = 800
DETAIL_MAX_CHARS = 300
REQUEST_ID_HEADERS: tuple[str, ...] = ("x-request-id", "request-id", "xai-request-id", "cf-ray")

TextMatcher = Callable[[Any], "str | None"]


def _non_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _join_parts(parts: Sequence[str]) -> str | None:
    return _non_empty("".join(parts))


def match_output_text(payload: Any) -> str | None:
    """Responses API convenience field."""
    if not isinstance(payload, Mapping):
        return None
    return _non_empty(payload.get("output_text"))


def match_responses_output(payload: Any) -> str | None:
    """Responses API ``output[]`` message items."""
    if not isinstance(payload, Mapping):
        return None
    output = payload.get("output")
    if not isinstance(output, list):
        return None
    parts: list[str] = []
    for item in output:
        if not isinstance(item, Mapping) or item.get("type") != "message":
            continue
        if item.get("role") not in (None, "assistant"):
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for part in content:
            if not isinstance(part, Mapping):
                continue
            if part.get("type") in ("output_text", "text") and isinstance(part.get("text"), str):
                parts.append(part["text"])
    return _join_parts(parts)


def match_chat_choices(payload: Any) -> str | None:
    """Chat-completions ``choices[0].message.content``."""
    if not isinstance(payload, Mapping):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, Mapping):
        return None
    message = first.get("message")
    if not isinstance(message, Mapping):
        return None
    content = message.get("content")
    if isinstance(content, list):
        return _join_parts(
            [part.get("text", "") for part in content if isinstance(part, Mapping) and isinstance(part.get("text"), str)]
        )
    return _non_empty(content)


def match_content_blocks(payload: Any) -> str | None:
    """Messages API ``content[]`` text blocks."""
    if not isinstance(payload, Mapping):
        return None
    content = payload.get("content")
    if not isinstance(content, list):
        return None
    return _join_parts(
        [
            block["text"]
            for block in content
            if isinstance(block, Mapping) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
    )


TEXT_SHAPES: tuple[TextMatcher, ...] = (
    match_output_text,
    match_responses_output,
    match_chat_choices,
    match_content_blocks,
)


def extract_text(payload: Any, shapes: Sequence[TextMatcher] = TEXT_SHAPES) -> str | None:
    for matcher in shapes:
        text = matcher(payload)
        if text is not None:
            return text
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def extract_usage_tokens(payload: Any) -> tuple[int, int]:
    """Return (input_tokens, output_tokens), zero when not reported."""

    if not isinstance(payload, Mapping):
        return 0, 0
    usage = payload.get("usage")
    if not isinstance(usage, Mapping):
        return 0, 0
    input_tokens = _as_int(usage.get("input_tokens"))
    if input_tokens is None:
        input_tokens = _as_int(usage.get("prompt_tokens"))
    output_tokens = _as_int(usage.get("output_tokens"))
    if output_tokens is None:
        output_tokens = _as_int(usage.get("completion_tokens"))
    return input_tokens or 0, output_tokens or 0


def response_snippet(body: Any, limit: int = SNIPPET_MAX_CHARS) -> str:
    if isinstance(body, str):
        text = body
    else:
        try:
            text = json.dumps(body, ensure_ascii=False)
        except (TypeError, ValueError):
            text = str(body)
    return text[:limit]


def error_detail(body: Any) -> str:
    """Best human-readable error detail from a provider error body."""

    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and isinstance(error.get("message"), str):
            return error["message"][:DETAIL_MAX_CHARS]
        if isinstance(error, str):
            return error[:DETAIL_MAX_CHARS]
        if isinstance(body.get("message"), str):
            return body["message"][:DETAIL_MAX_CHARS]
    return response_snippet(body, DETAIL_MAX_CHARS)


def request_id_from_headers(headers: Mapping[str, str] | None) -> str | None:
    if not headers:
        return None
    for name in REQUEST_ID_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


__all__ = [
    "REQUEST_ID_HEADERS",
    "SNIPPET_MAX_CHARS",
    "TEXT_SHAPES",
    "error_detail",
    "extract_text",
    "extract_usage_tokens",
    "match_chat_choices",
    "match_content_blocks",
    "match_output_text",
    "match_responses_output",
    "request_id_from_headers",
    "response_snippet",
]
