"""Logging setup for aharadar workers and tools.

Log lines across the package use ``key=value`` pairs (``llm_task=triage
provider=openai input_tokens=812``). The JSON formatter lifts those pairs into
a ``fields`` object so usage can be aggregated without parsing messages.
Anything that looks like a credential is masked before it is written.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from logging.config import dictConfig
from typing import Any, Dict

_DEV_ENVIRONMENTS = {"local", "dev", "development", "test"}

_COLOR_CODES = {
    "red": "\033[31m",
    "yellow": "\033[33m",
    "cyan": "\033[36m",
}

_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_KV_PAIR = re.compile(r"(?<![\w.])([a-z][a-z0-9_]*)=('[^']*'|\"[^\"]*\"|[^\s,]+)")
_SECRETS = (
    re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_\-]{8,}"),
    re.compile(r"(?i)\b(bearer|x-api-key:?)\s+[A-Za-z0-9_\-.]{8,}"),
)


def _environment() -> str:
    return os.getenv("AHARADAR_ENVIRONMENT", "dev").lower()


def _color_enabled() -> bool:
    flag = os.getenv("AHARADAR_LOG_COLOR", "")
    if not flag:
        return _environment() in _DEV_ENVIRONMENTS
    return flag == "1"


def colorize(text: str, color: str = "red") -> str:
    if not _color_enabled():
        return text
    prefix = _COLOR_CODES.get(color, "")
    suffix = "\033[0m" if prefix else ""
    return f"{prefix}{text}{suffix}"


def redact(text: str) -> str:
    """Mask API keys and bearer tokens."""

    for pattern in _SECRETS:
        text = pattern.sub(lambda m: f"{m.group(1)} ***" if m.lastindex else "sk-***", text)
    return text


def _coerce(value: str) -> Any:
    if value[:1] in {"'", '"'} and value[-1:] == value[:1]:
        return value[1:-1]
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def kv_fields(message: str) -> Dict[str, Any]:
    """``key=value`` pairs from a log message; numbers become numbers."""

    return {key: _coerce(value) for key, value in _KV_PAIR.findall(message)}


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg, record.args = cleaned, None
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with message pairs and ``extra`` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        fields = kv_fields(message)
        if fields:
            payload["fields"] = fields
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


class ColorTextFormatter(logging.Formatter):
    """Console formatter: errors red, warnings yellow, quota lines cyan."""

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        if record.levelno >= logging.ERROR:
            return colorize(formatted, "red")
        if record.levelno >= logging.WARNING:
            return colorize(formatted, "yellow")
        if record.name.startswith("aharadar.libs.quota"):
            return colorize(formatted, "cyan")
        return formatted


def logging_config(level: str, log_format: str) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": RedactingFilter}},
        "formatters": {
            "json": {"()": JsonFormatter},
            "text": {
                "()": ColorTextFormatter,
                "fmt": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if log_format == "json" else "text",
                "filters": ["redact"],
                "level": level,
            }
        },
        "root": {"handlers": ["console"], "level": level},
        # Request lines from httpx would repeat every provider call.
        "loggers": {"httpx": {"level": "WARNING"}, "httpcore": {"level": "WARNING"}},
    }


def configure_logging(*, level: str | None = None, log_format: str | None = None) -> None:
    """Configure root logging; arguments win over ``AHARADAR_LOG_*`` variables."""

    default_level = "DEBUG" if _environment() in _DEV_ENVIRONMENTS else "INFO"
    log_level = (level or os.getenv("AHARADAR_LOG_LEVEL") or default_level).upper()
    fmt = (log_format or os.getenv("AHARADAR_LOG_FORMAT") or "json").lower()
    dictConfig(logging_config(log_level, fmt))


__all__ = [
    "ColorTextFormatter",
    "JsonFormatter",
    "RedactingFilter",
    "colorize",
    "configure_logging",
    "kv_fields",
    "logging_config",
    "redact",
]
