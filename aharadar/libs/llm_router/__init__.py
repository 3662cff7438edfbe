"""Provider-agnostic LLM routing utilities."""

from .anthropic_provider import AnthropicProvider
from .base import BaseProvider
from .claude_subscription import ClaudeSubscriptionProvider
from .codex_subscription import CodexSubscriptionProvider
from .costs import estimate_llm_credits, estimate_qa_cost
from .errors import (
    InvalidJsonOutputError,
    LlmAuthError,
    LlmConfigError,
    LlmError,
    LlmOutputError,
    LlmProviderError,
    QuotaExceededError,
    SchemaValidationError,
    classify_llm_error,
    is_auth_like_message,
    is_llm_auth_error,
    is_quota_error,
)
from .openai_provider import OpenAIProvider
from .router import EnvLlmRouter, LlmRuntimeConfig, create_configured_router
from .types import BudgetTier, LlmCallResult, LlmRequest, LlmRouter, ModelRef, ReasoningEffort, TaskType

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "BudgetTier",
    "ClaudeSubscriptionProvider",
    "CodexSubscriptionProvider",
    "EnvLlmRouter",
    "InvalidJsonOutputError",
    "LlmAuthError",
    "LlmCallResult",
    "LlmConfigError",
    "LlmError",
    "LlmOutputError",
    "LlmProviderError",
    "LlmRequest",
    "LlmRouter",
    "LlmRuntimeConfig",
    "ModelRef",
    "OpenAIProvider",
    "QuotaExceededError",
    "ReasoningEffort",
    "SchemaValidationError",
    "TaskType",
    "classify_llm_error",
    "create_configured_router",
    "estimate_llm_credits",
    "estimate_qa_cost",
    "is_auth_like_message",
    "is_llm_auth_error",
    "is_quota_error",
]
