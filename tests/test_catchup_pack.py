import pytest

from aharadar.libs.llm_router.errors import SchemaValidationError
from aharadar.libs.llm_router.types import BudgetTier, TaskType
from aharadar.libs.llm_tasks.catchup_pack import (
    CATCHUP_PACK_JSON_SCHEMA,
    CATCHUP_PACK_SELECT_JSON_SCHEMA,
    CatchupPackCandidate,
    CatchupPackSelectInput,
    CatchupPackTargets,
    CatchupPackTierInput,
    select_catchup_pack,
    tier_catchup_pack,
)

ITEMS = [
    CatchupPackCandidate(item_id="a", source_type="rss", aha_score=91, title="T" * 300, body_snippet="b" * 400),
    CatchupPackCandidate(item_id="b", source_type="hn", aha_score=64, author="pg"),
]


def _pick(item_id, **overrides):
    pick = {"item_id": item_id, "why": "Worth your time", "theme": "Releases"}
    pick.update(overrides)
    return pick


@pytest.mark.asyncio
async def test_select_catchup_pack(scripted_router, sleeper):
    response = {
        "schema_version": "catchup_pack_select_v1",
        "prompt_id": "catchup_pack_select_v1",
        "selections": [_pick("a"), _pick("b", why=""), {"item_id": "c"}],
    }
    env = {"OPENAI_CATCHUP_PACK_SELECT_CREDITS_PER_1K_INPUT_TOKENS": "2", "OPENAI_CREDITS_PER_1K_INPUT_TOKENS": "9"}
    router = scripted_router([response], env=env)
    data = CatchupPackSelectInput(time_budget_minutes=30, min_select=1, max_select=5, items=ITEMS)

    result = await select_catchup_pack(router, BudgetTier.NORMAL, data, sleep=sleeper)

    assert [s.item_id for s in result.output.selections] == ["a"]
    assert result.cost_estimate_credits == pytest.approx(0.2)
    assert router.chosen == [(TaskType.CATCHUP_PACK_SELECT, BudgetTier.NORMAL)]
    assert router.requests[0][2].max_output_tokens == 1200
    schema = router.requests[0][2].json_schema
    assert schema["properties"]["schema_version"]["const"] == "catchup_pack_select_v1"
    assert schema["properties"]["model"] == {"type": "string", "const": "gpt-test"}
    assert schema["properties"]["selections"]["items"]["required"] == ["item_id", "why", "theme"]

    payload = router.user_payload()
    assert (payload["time_budget_minutes"], payload["min_select"], payload["max_select"]) == (30, 1, 5)
    first = payload["items"][0]
    assert len(first["title"]) == 180
    assert len(first["body_snippet"]) == 200
    assert "why" not in first


@pytest.mark.asyncio
async def test_select_requires_at_least_one_selection(scripted_router, sleeper):
    router = scripted_router([{"selections": []}, {"selections": [{"item_id": "a"}]}])
    data = CatchupPackSelectInput(time_budget_minutes=30, min_select=1, max_select=5, items=ITEMS)
    with pytest.raises(SchemaValidationError):
        await select_catchup_pack(router, BudgetTier.NORMAL, data, sleep=sleeper, rng=lambda: 0.0)
    assert len(router.requests) == 2


def _pack(**overrides):
    pack = {
        "schema_version": "catchup_pack_v1",
        "prompt_id": "catchup_pack_v1",
        "time_budget_minutes": 999,
        "tiers": {
            "must_read": [_pick("a")],
            "worth_scanning": [_pick("b")],
            "headlines": [_pick("b", theme="Misc")],
        },
        "themes": [
            {"title": "Releases", "summary": "Two launches this week", "item_ids": ["a", 7, " b "]},
            {"title": "Empty"},
        ],
        "notes": "  A busy week for launches.  ",
    }
    pack.update(overrides)
    return pack


TIER_INPUT = CatchupPackTierInput(
    time_budget_minutes=45,
    targets=CatchupPackTargets(must_read=1, worth_scanning=1, headlines=1),
    items=[
        CatchupPackCandidate(item_id="a", source_type="rss", aha_score=91, why="Big launch", theme="Releases"),
        CatchupPackCandidate(item_id="b", source_type="hn", aha_score=64),
    ],
)


@pytest.mark.asyncio
async def test_tier_catchup_pack(scripted_router, sleeper):
    router = scripted_router([_pack()])

    result = await tier_catchup_pack(router, BudgetTier.LOW, TIER_INPUT, sleep=sleeper)

    output = result.output
    assert output.time_budget_minutes == 45
    assert [s.item_id for s in output.tiers.must_read] == ["a"]
    assert [theme.title for theme in output.themes] == ["Releases"]
    assert output.themes[0].item_ids == ["a", " b "]
    assert output.notes == "A busy week for launches."
    assert router.chosen == [(TaskType.CATCHUP_PACK_TIER, BudgetTier.LOW)]
    assert router.requests[0][2].max_output_tokens == 1800
    schema = router.requests[0][2].json_schema
    assert schema["properties"]["provider"] == {"type": "string", "const": "openai"}
    assert set(schema["properties"]["tiers"]["required"]) == {"must_read", "worth_scanning", "headlines"}
    assert "notes" not in schema["required"]

    payload = router.user_payload()
    assert payload["targets"] == {"must_read": 1, "worth_scanning": 1, "headlines": 1}
    assert payload["items"][0]["why"] == "Big launch"
    assert payload["items"][1]["theme"] is None


@pytest.mark.asyncio
async def test_tier_requires_every_tier(scripted_router, sleeper):
    tiers = {"must_read": [_pick("a")], "worth_scanning": [], "headlines": [_pick("b")]}
    bad = _pack(tiers=tiers)
    router = scripted_router([bad, bad])
    with pytest.raises(SchemaValidationError, match="Catch-up pack tier output failed schema validation"):
        await tier_catchup_pack(router, BudgetTier.NORMAL, TIER_INPUT, sleep=sleeper, rng=lambda: 0.0)


@pytest.mark.asyncio
async def test_tier_notes_are_optional(scripted_router, sleeper):
    pack = _pack(notes="   ")
    router = scripted_router([pack])
    result = await tier_catchup_pack(router, BudgetTier.NORMAL, TIER_INPUT, sleep=sleeper)
    assert result.output.notes is None


def test_catchup_schema_templates_stay_unpinned():
    assert CATCHUP_PACK_SELECT_JSON_SCHEMA["properties"]["provider"] == {"type": "string"}
    assert CATCHUP_PACK_JSON_SCHEMA["properties"]["model"] == {"type": "string"}
