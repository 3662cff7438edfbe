import pytest

from aharadar.libs.llm_router.costs import estimate_llm_credits, estimate_qa_cost, resolve_rate
from aharadar.libs.llm_router.types import TaskType


def test_task_rate_beats_provider_and_global():
    env = {
        "OPENAI_TRIAGE_CREDITS_PER_1K_INPUT_TOKENS": "2",
        "OPENAI_CREDITS_PER_1K_INPUT_TOKENS": "5",
        "OPENAI_CREDITS_PER_1K_OUTPUT_TOKENS": "4",
        "LLM_CREDITS_PER_1K_INPUT_TOKENS": "100",
    }
    credits = estimate_llm_credits("openai", 1000, 500, task=TaskType.TRIAGE, env=env)
    assert credits == pytest.approx(2 + 2)
    # Batch triage is billed under the triage keys.
    assert estimate_llm_credits("openai", 1000, 500, task=TaskType.TRIAGE_BATCH, env=env) == pytest.approx(4)
    # Other tasks use the provider rate.
    assert estimate_llm_credits("openai", 1000, 0, task=TaskType.DEEP_SUMMARY, env=env) == pytest.approx(5)


def test_global_fallback_and_zero_default():
    env = {"LLM_CREDITS_PER_1K_OUTPUT_TOKENS": "1.5"}
    assert estimate_llm_credits("anthropic", 4000, 2000, env=env) == pytest.approx(3.0)
    assert estimate_llm_credits("anthropic", 4000, 2000, env={}) == 0.0


def test_unparseable_rates_fall_through():
    env = {"OPENAI_TRIAGE_CREDITS_PER_1K_INPUT_TOKENS": "cheap", "OPENAI_CREDITS_PER_1K_INPUT_TOKENS": "0.5"}
    assert resolve_rate(env, "openai", "INPUT", task=TaskType.TRIAGE) == 0.5
    assert resolve_rate({"OPENAI_CREDITS_PER_1K_INPUT_TOKENS": "inf"}, "openai", "INPUT") == 0.0


def test_subscription_provider_keys_are_normalised():
    env = {"CLAUDE_SUBSCRIPTION_CREDITS_PER_1K_INPUT_TOKENS": "1.5"}
    assert resolve_rate(env, "claude-subscription", "input") == 1.5


def test_qa_cost_estimate_uses_qa_rates():
    env = {"OPENAI_QA_CREDITS_PER_1K_INPUT_TOKENS": "1", "OPENAI_QA_CREDITS_PER_1K_OUTPUT_TOKENS": "3"}
    assert estimate_qa_cost("openai", 2000, 1000, env=env) == pytest.approx(5.0)


def test_manual_summary_reads_unprefixed_rates():
    env = {"MANUAL_SUMMARY_CREDITS_PER_1K_INPUT_TOKENS": "5", "OPENAI_CREDITS_PER_1K_INPUT_TOKENS": "1"}
    assert estimate_llm_credits("openai", 1000, 0, task=TaskType.MANUAL_SUMMARY, env=env) == pytest.approx(5.0)
    # A provider-scoped task rate still wins.
    env["OPENAI_MANUAL_SUMMARY_CREDITS_PER_1K_INPUT_TOKENS"] = "7"
    assert resolve_rate(env, "openai", "INPUT", task=TaskType.MANUAL_SUMMARY) == 7.0
    # Other tasks ignore unprefixed keys.
    assert resolve_rate({"TRIAGE_CREDITS_PER_1K_INPUT_TOKENS": "5"}, "openai", "INPUT", task=TaskType.TRIAGE) == 0.0


def test_openai_task_rates_apply_to_other_providers():
    env = {
        "OPENAI_TRIAGE_CREDITS_PER_1K_OUTPUT_TOKENS": "3",
        "ANTHROPIC_CREDITS_PER_1K_OUTPUT_TOKENS": "1",
    }
    assert resolve_rate(env, "anthropic", "OUTPUT", task=TaskType.TRIAGE) == 3.0
    env["ANTHROPIC_TRIAGE_CREDITS_PER_1K_OUTPUT_TOKENS"] = "2"
    assert resolve_rate(env, "anthropic", "OUTPUT", task=TaskType.TRIAGE) == 2.0
    # Without a task only provider and global keys apply.
    assert resolve_rate(env, "anthropic", "OUTPUT") == 1.0
