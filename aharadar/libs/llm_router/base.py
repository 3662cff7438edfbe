"""Abstract provider interfaces for the LLM router."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .errors import LlmConfigError
from .types import LlmCallResult, LlmRequest, ModelRef, TaskType


class BaseProvider(ABC):
    """Common interface all LLM providers must implement."""

    def __init__(self, name: str) -> None:
        self.name = name

    async def call(
        self,
        ref: ModelRef,
        request: LlmRequest,
        *,
        task: TaskType | None = None,
    ) -> LlmCallResult:
        """Execute ``request`` against the model named by ``ref``."""

        if ref.provider != self.name:
            raise LlmConfigError(
                f"Model ref for provider '{ref.provider}' dispatched to '{self.name}' adapter"
            )
        return await self._call(ref, request, task=task)

    @abstractmethod
    async def _call(
        self,
        ref: ModelRef,
        request: LlmRequest,
        *,
        task: TaskType | None,
    ) -> LlmCallResult:
        """Perform the provider-specific request."""


__all__ = ["BaseProvider"]
