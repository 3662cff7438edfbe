from __future__ import annotations

import json
import re
from typing import Any

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _parse_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_object(blob: str | None) -> dict[str, Any] | None:
    """
    Recover a JSON object from LLM output that may be raw, fenced in
    markdown, or wrapped in prose. Returns None when nothing parses.
    """

    text = (blob or "").strip()
    if not text:
        return None

    if text.startswith("{"):
        parsed = _parse_object(text)
        if parsed is not None:
            return parsed

    # Models that think out loud often emit several blocks; the last one is the answer.
    last_block: str | None = None
    for match in _FENCED_BLOCK.finditer(text):
        content = match.group(1).strip()
        if content.startswith("{"):
            last_block = content
    if last_block is not None:
        parsed = _parse_object(last_block)
        if parsed is not None:
            return parsed

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return _parse_object(text[start : end + 1])
    return None


def compact_json(payload: Any) -> str:
    """Serialise a prompt payload the way it is sent to the model."""

    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


__all__ = ["compact_json", "extract_json_object"]
