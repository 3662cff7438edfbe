"""Shared type utilities for the LLM router."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol


class TaskType(str, Enum):
    """Routing keys for LLM work."""

    TRIAGE = "triage"
    TRIAGE_BATCH = "triage_batch"
    DEEP_SUMMARY = "deep_summary"
    AGGREGATE_SUMMARY = "aggregate_summary"
    MANUAL_SUMMARY = "manual_summary"
    CATCHUP_PACK_SELECT = "catchup_pack_select"
    CATCHUP_PACK_TIER = "catchup_pack_tier"
    ENTITY_EXTRACT = "entity_extract"
    SIGNAL_PARSE = "signal_parse"
    QA = "qa"

    @property
    def config_key(self) -> str:
        """Upper-case key used in task-scoped environment variables."""
        # Batch triage shares the single-item triage configuration.
        if self is TaskType.TRIAGE_BATCH:
            return TaskType.TRIAGE.value.upper()
        return self.value.upper()


class BudgetTier(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ReasoningEffort(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: str | None) -> "ReasoningEffort | None":
        """Parse a configuration value, ignoring anything unrecognised."""

        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class ModelRef:
    """Resolved provider/model/endpoint for a single call."""

    provider: str
    model: str
    endpoint: str


@dataclass(frozen=True, slots=True)
class LlmRequest:
    """Provider-agnostic request payload."""

    system: str
    user: str
    max_output_tokens: int | None = None
    temperature: float | None = None
    reasoning_effort: ReasoningEffort | None = None
    json_schema: Mapping[str, Any] | None = None


@dataclass(slots=True)
class LlmCallResult:
    """Normalised result returned by every provider adapter."""

    output_text: str
    raw_response: Any
    input_tokens: int
    output_tokens: int
    endpoint: str
    structured_output: Any = None


class LlmRouter(Protocol):
    """Interface consumed by task executors."""

    def choose_model(self, task: TaskType, tier: BudgetTier) -> ModelRef:
        ...

    async def call(self, task: TaskType, ref: ModelRef, request: LlmRequest) -> LlmCallResult:
        ...


__all__ = [
    "BudgetTier",
    "LlmCallResult",
    "LlmRequest",
    "LlmRouter",
    "ModelRef",
    "ReasoningEffort",
    "TaskType",
]
