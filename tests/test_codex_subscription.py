from pathlib import Path

import pytest

from aharadar.libs.llm_router.codex_subscription import (
    CODEX_SUBSCRIPTION_ENDPOINT,
    CodexSubscriptionProvider,
    build_prompt,
)
from aharadar.libs.llm_router.errors import LlmConfigError, LlmProviderError
from aharadar.libs.llm_router.types import LlmRequest, ModelRef
from aharadar.libs.quota.store import CODEX, UsageStore

REF = ModelRef(provider="codex-subscription", model="gpt-5-codex", endpoint=CODEX_SUBSCRIPTION_ENDPOINT)


@pytest.mark.asyncio
async def test_reads_last_message_file_and_records_usage(monkeypatch):
    captured = {}

    async def fake_run(args, prompt, *, model):
        captured["args"] = args
        captured["prompt"] = prompt
        output = Path(args[args.index("--output-last-message") + 1])
        output.write_text('{"ok": true}\n', encoding="utf-8")
        return "progress noise", "", 0

    store = UsageStore()
    provider = CodexSubscriptionProvider(usage_store=store, command="codex --profile work")
    monkeypatch.setattr(provider, "_run", fake_run)

    result = await provider.call(REF, LlmRequest(system="sys", user="usr"))

    assert result.output_text == '{"ok": true}'
    assert result.endpoint == CODEX_SUBSCRIPTION_ENDPOINT
    assert (result.input_tokens, result.output_tokens) == (0, 0)
    assert store.get_usage(CODEX).calls == 1
    assert captured["args"][:6] == ["codex", "--profile", "work", "exec", "--skip-git-repo-check", "--model"]
    assert captured["args"][6] == "gpt-5-codex"
    assert captured["args"][-1] == "-"
    assert captured["prompt"] == "sys\n\nusr"


@pytest.mark.asyncio
async def test_falls_back_to_stdout(monkeypatch):
    async def fake_run(args, prompt, *, model):
        return '  {"from": "stdout"}  ', "", 0

    provider = CodexSubscriptionProvider()
    monkeypatch.setattr(provider, "_run", fake_run)
    result = await provider.call(REF, LlmRequest(system="", user="usr"))
    assert result.output_text == '{"from": "stdout"}'


@pytest.mark.asyncio
async def test_non_zero_exit_raises_and_is_not_counted(monkeypatch):
    async def fake_run(args, prompt, *, model):
        return "", "error: model not available", 2

    store = UsageStore()
    provider = CodexSubscriptionProvider(usage_store=store)
    monkeypatch.setattr(provider, "_run", fake_run)
    with pytest.raises(LlmProviderError, match="exited with code 2: error: model not available"):
        await provider.call(REF, LlmRequest(system="s", user="u"))
    assert store.get_usage(CODEX).calls == 0


@pytest.mark.asyncio
async def test_missing_binary_is_a_config_error():
    provider = CodexSubscriptionProvider(command="aharadar-no-such-codex-binary")
    with pytest.raises(LlmConfigError, match="not found"):
        await provider.call(REF, LlmRequest(system="s", user="u"))


def test_build_prompt_and_empty_command():
    assert build_prompt(LlmRequest(system="", user="only user")) == "only user"
    with pytest.raises(ValueError):
        CodexSubscriptionProvider(command="")
