"""Error taxonomy and classification helpers for LLM calls."""

from __future__ import annotations

import re
from typing import Any

LLM_AUTH_ERROR_CODE = "LLM_AUTH_ERROR"
LLM_AUTH_ERROR_MESSAGE = (
    "LLM authentication failed. Re-login for the selected provider or switch to an API-key provider."
)

_AUTH_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"could not resolve authentication method",
        r"expected either apikey or authtoken to be set",
        r"invalid api key",
        r"api key.*required",
        r"missing.*api key",
        r"auth token",
        r"authorization header:\s*false",
        r"authentication failed",
        r"unauthorized",
        r"forbidden",
        r"not logged in",
        r"please run .*login",
        r"login required",
    )
)

_QUOTA_PATTERNS: tuple[str, ...] = ("quota exceeded", "rate limit", "too many")


class LlmError(RuntimeError):
    """Base class for errors raised by the LLM subsystem."""

    code = "LLM_ERROR"


class LlmConfigError(LlmError):
    """Raised when a credential or model mapping is missing."""

    code = "LLM_CONFIG_ERROR"


class LlmProviderError(LlmError):
    """Raised on transport failures or unusable provider responses."""

    code = "LLM_PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        endpoint: str | None = None,
        model: str | None = None,
        response_snippet: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.endpoint = endpoint
        self.model = model
        self.response_snippet = response_snippet
        self.request_id = request_id


class QuotaExceededError(LlmError):
    """Raised when a subscription provider has no hourly capacity left."""

    code = "QUOTA_EXCEEDED"


class LlmAuthError(LlmError):
    """Raised when the selected provider rejects or lacks credentials."""

    code = LLM_AUTH_ERROR_CODE

    def __init__(self, message: str = LLM_AUTH_ERROR_MESSAGE) -> None:
        super().__init__(message)


class LlmOutputError(LlmError):
    """Raised when model output cannot be turned into a task record."""

    code = "LLM_OUTPUT_ERROR"


class InvalidJsonOutputError(LlmOutputError):
    code = "LLM_INVALID_JSON"


class SchemaValidationError(LlmOutputError):
    code = "LLM_SCHEMA_VALIDATION"


def is_auth_like_message(text: str | None) -> bool:
    """Return True when the text carries an authentication-failure signature."""

    if not text:
        return False
    return any(pattern.search(text) for pattern in _AUTH_PATTERNS)


def _error_code(exc: BaseException) -> Any:
    return getattr(exc, "code", None)


def is_llm_auth_error(exc: BaseException) -> bool:
    """Check the stable code first, then fall back to message patterns."""

    if _error_code(exc) == LLM_AUTH_ERROR_CODE:
        return True
    return is_auth_like_message(str(exc))


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, QuotaExceededError):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in _QUOTA_PATTERNS)


def classify_llm_error(exc: BaseException) -> BaseException:
    """Tag authentication failures with a stable code and actionable message.

    Errors already tagged with the auth code are returned unchanged, so the
    function is idempotent. Unrelated errors are returned as-is. Callers
    re-raise the result, chaining from the original when it differs.
    """

    if _error_code(exc) == LLM_AUTH_ERROR_CODE:
        return exc
    if not is_auth_like_message(str(exc)):
        return exc
    classified = LlmAuthError()
    classified.__cause__ = exc
    return classified


__all__ = [
    "InvalidJsonOutputError",
    "LLM_AUTH_ERROR_CODE",
    "LLM_AUTH_ERROR_MESSAGE",
    "LlmAuthError",
    "LlmConfigError",
    "LlmError",
    "LlmOutputError",
    "LlmProviderError",
    "QuotaExceededError",
    "SchemaValidationError",
    "classify_llm_error",
    "is_auth_like_message",
    "is_llm_auth_error",
    "is_quota_error",
]
