"""Codex subscription provider that shells out to a logged-in ``codex`` CLI."""

from __future__ import annotations

import asyncio
import logging
import shlex
import tempfile
from pathlib import Path
from typing import Sequence

from aharadar.libs.quota.store import CODEX, UsageStore

from .base import BaseProvider
from .errors import LlmConfigError, LlmProviderError
from .shapes import SNIPPET_MAX_CHARS
from .types import LlmCallResult, LlmRequest, ModelRef, TaskType

CODEX_SUBSCRIPTION_ENDPOINT = "codex-subscription"
DEFAULT_CODEX_COMMAND = "codex"
DEFAULT_CODEX_TIMEOUT_SECONDS = 300.0


def build_prompt(request: LlmRequest) -> str:
    if request.system:
        return f"{request.system}\n\n{request.user}"
    return request.user


class CodexSubscriptionProvider(BaseProvider):
    """Provider running one non-interactive ``codex exec`` turn per call."""

    def __init__(
        self,
        *,
        usage_store: UsageStore | None = None,
        command: str | Sequence[str] = DEFAULT_CODEX_COMMAND,
        timeout: float = DEFAULT_CODEX_TIMEOUT_SECONDS,
        workdir: str | None = None,
    ) -> None:
        super().__init__(name="codex-subscription")
        self._usage_store = usage_store
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._command:
            raise ValueError("Codex command must not be empty")
        self._timeout = timeout
        self._workdir = workdir
        self._logger = logging.getLogger(__name__)

    def build_args(self, model: str, output_path: Path) -> list[str]:
        return [
            *self._command,
            "exec",
            "--skip-git-repo-check",
            "--model",
            model,
            "--output-last-message",
            str(output_path),
            "-",
        ]

    async def _call(
        self,
        ref: ModelRef,
        request: LlmRequest,
        *,
        task: TaskType | None,
    ) -> LlmCallResult:
        with tempfile.TemporaryDirectory(prefix="aharadar-codex-") as tmp:
            output_path = Path(tmp) / "last_message.txt"
            args = self.build_args(ref.model, output_path)
            stdout, stderr, returncode = await self._run(args, build_prompt(request), model=ref.model)
            if returncode != 0:
                detail = (stderr or stdout).strip()
                self._logger.warning(
                    "provider=%s model=%s exit_code=%s", self.name, ref.model, returncode
                )
                raise LlmProviderError(
                    f"Codex CLI exited with code {returncode}: {detail[:300]}",
                    provider=self.name,
                    endpoint=CODEX_SUBSCRIPTION_ENDPOINT,
                    model=ref.model,
                    response_snippet=detail[:SNIPPET_MAX_CHARS],
                )
            if output_path.exists():
                final = output_path.read_text(encoding="utf-8")
            else:
                final = stdout

        if self._usage_store is not None:
            self._usage_store.record_usage(CODEX, calls=1)

        return LlmCallResult(
            output_text=final.strip(),
            raw_response={"stdout": stdout, "stderr": stderr, "returncode": returncode},
            input_tokens=0,
            output_tokens=0,
            endpoint=CODEX_SUBSCRIPTION_ENDPOINT,
        )

    async def _run(self, args: list[str], prompt: str, *, model: str) -> tuple[str, str, int]:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._workdir,
            )
        except FileNotFoundError as exc:
            raise LlmConfigError(f"Codex CLI command not found: {args[0]}") from exc
        except OSError as exc:
            raise LlmProviderError(
                f"Codex CLI failed to start: {exc}",
                provider=self.name,
                endpoint=CODEX_SUBSCRIPTION_ENDPOINT,
                model=model,
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise LlmProviderError(
                f"Codex CLI timed out after {self._timeout:.0f}s",
                provider=self.name,
                endpoint=CODEX_SUBSCRIPTION_ENDPOINT,
                model=model,
            ) from exc
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode if process.returncode is not None else -1,
        )


__all__ = [
    "CODEX_SUBSCRIPTION_ENDPOINT",
    "CodexSubscriptionProvider",
    "DEFAULT_CODEX_TIMEOUT_SECONDS",
    "build_prompt",
]
