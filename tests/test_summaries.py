import pytest

from aharadar.libs.llm_router.errors import LlmAuthError, SchemaValidationError
from aharadar.libs.llm_router.types import BudgetTier, ReasoningEffort, TaskType
from aharadar.libs.llm_tasks.aggregate_summary import (
    AggregateSummaryInput,
    AggregateSummaryItem,
    ClusterMember,
    aggregate_summary,
)
from aharadar.libs.llm_tasks.deep_summary import (
    DeepSummaryCandidateInput,
    deep_summarize_candidate,
    max_output_tokens_for,
)
from aharadar.libs.llm_tasks.manual_summary import ManualSummaryInput, manual_summarize

CANDIDATE = DeepSummaryCandidateInput(
    id="item-1",
    source_type="reddit",
    title="Rate cut odds shift after CPI print",
    body_text="Body text with comments",
)


def _deep(**overrides):
    summary = {
        "schema_version": "deep_summary_v2",
        "prompt_id": "deep_summary_v2",
        "provider": "openai",
        "model": "gpt-test",
        "one_liner": "Markets now price two cuts this year.",
        "bullets": ["CPI came in soft", "  ", "Futures repriced"],
        "discussion_highlights": ["Commenters doubt the Fed will move"],
        "sections": [
            {"title": "Bull Case", "items": ["Cheaper credit"]},
            {"title": "", "items": ["dropped: no title"]},
            {"title": "Bear Case", "items": []},
        ],
    }
    summary.update(overrides)
    return summary


@pytest.mark.asyncio
async def test_deep_summary_keeps_valid_sections(scripted_router, sleeper):
    router = scripted_router([_deep()])

    result = await deep_summarize_candidate(router, BudgetTier.NORMAL, CANDIDATE, sleep=sleeper)

    output = result.output
    assert output.bullets == ["CPI came in soft", "Futures repriced"]
    assert [section.title for section in output.sections] == ["Bull Case"]
    assert output.discussion_highlights == ["Commenters doubt the Fed will move"]
    assert router.chosen == [(TaskType.DEEP_SUMMARY, BudgetTier.NORMAL)]
    assert router.requests[0][2].max_output_tokens == 700
    assert router.user_payload()["candidate"]["id"] == "item-1"


@pytest.mark.asyncio
async def test_deep_summary_upgrades_flat_v1(scripted_router, sleeper):
    legacy = _deep(
        schema_version="deep_summary_v1",
        prompt_id="deep_summary_v1",
        why_it_matters=["Affects mortgage rates"],
        risks_or_caveats=[],
        suggested_followups=["Watch the next FOMC"],
    )
    del legacy["sections"]
    router = scripted_router([legacy])

    result = await deep_summarize_candidate(router, BudgetTier.NORMAL, CANDIDATE, sleep=sleeper)

    sections = result.output.sections
    assert [(s.title, s.items) for s in sections] == [
        ("Why It Matters", ["Affects mortgage rates"]),
        ("Suggested Follow-ups", ["Watch the next FOMC"]),
    ]
    assert result.output.schema_version == "deep_summary_v2"


@pytest.mark.asyncio
async def test_deep_summary_rejects_mismatched_versions(scripted_router, sleeper):
    bad = _deep(prompt_id="deep_summary_v1")
    router = scripted_router([bad, bad])
    with pytest.raises(SchemaValidationError, match="Deep summary output failed schema validation"):
        await deep_summarize_candidate(router, BudgetTier.NORMAL, CANDIDATE, sleep=sleeper, rng=lambda: 0.0)


@pytest.mark.asyncio
async def test_deep_summary_effort_and_budget(scripted_router, sleeper):
    router = scripted_router([_deep(), _deep()], env={"OPENAI_DEEP_SUMMARY_REASONING_EFFORT": "medium"})

    await deep_summarize_candidate(router, BudgetTier.HIGH, CANDIDATE, sleep=sleeper)
    await deep_summarize_candidate(router, BudgetTier.HIGH, CANDIDATE, reasoning_effort="high", sleep=sleeper)

    first, second = router.requests[0][2], router.requests[1][2]
    assert (first.reasoning_effort, first.max_output_tokens) == (ReasoningEffort.MEDIUM, 2500)
    assert (second.reasoning_effort, second.max_output_tokens) == (ReasoningEffort.HIGH, 5000)

    router = scripted_router([_deep()], env={"OPENAI_DEEP_SUMMARY_MAX_OUTPUT_TOKENS": "900"})
    await deep_summarize_candidate(router, BudgetTier.LOW, CANDIDATE, reasoning_effort="low", sleep=sleeper)
    assert router.requests[0][2].max_output_tokens == 900


def test_max_output_tokens_for():
    assert max_output_tokens_for(None) == 700
    assert max_output_tokens_for(ReasoningEffort.LOW) == 1200
    assert max_output_tokens_for(ReasoningEffort.HIGH, 300) == 300


@pytest.mark.asyncio
async def test_guidance_shapes_system_prompt(scripted_router, sleeper):
    router = scripted_router([_deep(), _deep()])

    await deep_summarize_candidate(
        router, BudgetTier.NORMAL, CANDIDATE, ai_guidance="Frame as bull/bear case.", sleep=sleeper
    )
    await deep_summarize_candidate(router, BudgetTier.NORMAL, CANDIDATE, ai_guidance="   ", sleep=sleeper)

    guided, default = router.requests[0][2].system, router.requests[1][2].system
    assert "Topic-Specific Guidance" in guided
    assert "Frame as bull/bear case." in guided
    assert '"Why It Matters", "Risks & Caveats", "Suggested Follow-ups"' in default
    assert "Topic-Specific Guidance" not in default


def _manual(**overrides):
    summary = _deep(schema_version="manual_summary_v3", prompt_id="manual_summary_v3")
    summary.update(overrides)
    return summary


@pytest.mark.asyncio
async def test_manual_summary_routes_as_deep_summary(scripted_router, sleeper):
    env = {
        "OPENAI_MANUAL_SUMMARY_CREDITS_PER_1K_OUTPUT_TOKENS": "10",
        "OPENAI_DEEP_SUMMARY_CREDITS_PER_1K_OUTPUT_TOKENS": "1000",
        "MANUAL_SUMMARY_MAX_INPUT_CHARS": "12",
    }
    router = scripted_router([_manual()], env=env)
    item = ManualSummaryInput(pasted_text="Pasted article body text", title="Pasted", url="https://example.com/a")

    result = await manual_summarize(router, BudgetTier.NORMAL, item, sleep=sleeper)

    assert result.output.schema_version == "manual_summary_v3"
    assert router.chosen == [(TaskType.DEEP_SUMMARY, BudgetTier.NORMAL)]
    assert result.cost_estimate_credits == pytest.approx(0.5)
    payload = router.user_payload()
    assert payload["pasted_content"] == "Pasted artic"
    assert payload["metadata"]["url"] == "https://example.com/a"
    assert "content summaries" in router.requests[0][2].system


@pytest.mark.asyncio
async def test_manual_summary_upgrades_v2(scripted_router, sleeper):
    legacy = _manual(schema_version="manual_summary_v2", prompt_id="manual_summary_v2", why_it_matters=["Context"])
    del legacy["sections"]
    router = scripted_router([legacy])
    result = await manual_summarize(router, BudgetTier.NORMAL, ManualSummaryInput(pasted_text="x"), sleep=sleeper)
    assert result.output.sections[0].title == "Why It Matters"


@pytest.mark.asyncio
async def test_manual_summary_auth_text_is_not_retried(scripted_router, sleeper):
    router = scripted_router(["Invalid API key · Please run /login", _manual()])
    with pytest.raises(LlmAuthError):
        await manual_summarize(router, BudgetTier.NORMAL, ManualSummaryInput(pasted_text="x"), sleep=sleeper)
    assert len(router.requests) == 1
    assert sleeper.delays == []


def _aggregate(**overrides):
    summary = {
        "schema_version": "aggregate_summary_v1",
        "prompt_id": "aggregate_summary_v1",
        "one_liner": "A quiet week with one big release.",
        "overview": "Most items covered the release and its reception.",
        "sentiment": {"label": "positive", "confidence": 0.8, "rationale": "Mostly praise."},
        "themes": [
            {"title": "Release", "summary": "v2 shipped", "item_ids": ["a", "b"]},
            {"title": "", "summary": "dropped"},
        ],
        "notable_items": [{"item_id": "a", "why": "Official announcement"}, {"item_id": "b"}],
    }
    summary.update(overrides)
    return summary


AGGREGATE_INPUT = AggregateSummaryInput(
    items=[
        AggregateSummaryItem(
            item_id="a",
            source_type="rss",
            aha_score=80,
            title="v2 released",
            cluster_member_count=3,
            cluster_members=[ClusterMember(title="v2 out now", source_type="hn")],
        ),
        AggregateSummaryItem(item_id="b", source_type="hn", aha_score=55, body_snippet="s" * 900),
    ],
    scope_type="digest",
    window_start="2025-01-01T00:00:00Z",
)


@pytest.mark.asyncio
async def test_aggregate_summary(scripted_router, sleeper):
    router = scripted_router([_aggregate()])

    result = await aggregate_summary(router, BudgetTier.NORMAL, AGGREGATE_INPUT, sleep=sleeper)

    output = result.output
    assert [theme.title for theme in output.themes] == ["Release"]
    assert [item.item_id for item in output.notable_items] == ["a"]
    assert output.open_questions == []
    assert output.sentiment.label == "positive"
    assert router.requests[0][2].max_output_tokens == 2000

    payload = router.user_payload()
    assert payload["scope_type"] == "digest"
    assert payload["item_count"] == 2
    first, second = payload["items"]
    assert first["cluster_member_count"] == 3
    assert first["cluster_members"] == [{"title": "v2 out now", "source_type": "hn"}]
    assert "cluster_member_count" not in second
    assert len(second["body_snippet"]) == 500


@pytest.mark.parametrize(
    "overrides",
    [
        {"sentiment": {"label": "mixed", "confidence": 0.5, "rationale": "r"}},
        {"sentiment": {"label": "neutral", "confidence": "0.5", "rationale": "r"}},
        {"sentiment": {"label": "neutral", "confidence": 1.5, "rationale": "r"}},
        {"themes": [{"title": "", "summary": "x"}]},
        {"notable_items": []},
        {"overview": "   "},
    ],
)
@pytest.mark.asyncio
async def test_aggregate_summary_validation_failures(scripted_router, sleeper, overrides):
    bad = _aggregate(**overrides)
    router = scripted_router([bad, bad])
    with pytest.raises(SchemaValidationError):
        await aggregate_summary(router, BudgetTier.NORMAL, AGGREGATE_INPUT, sleep=sleeper, rng=lambda: 0.0)
