from aharadar.libs.json_utils import compact_json, extract_json_object


def test_direct_object():
    assert extract_json_object('  {"aha_score": 40, "reason": "ok"} ') == {"aha_score": 40, "reason": "ok"}


def test_last_fenced_block_wins():
    text = (
        "Let me think about this.\n"
        "```json\n{\"draft\": true}\n```\n"
        "Actually, final answer:\n"
        "```json\n{\"draft\": false}\n```"
    )
    assert extract_json_object(text) == {"draft": False}


def test_unlabelled_fence_and_non_object_blocks():
    text = "```\n[1, 2, 3]\n```\n```\n{\"a\": 1}\n```"
    assert extract_json_object(text) == {"a": 1}


def test_object_embedded_in_prose():
    assert extract_json_object('Sure! Here you go: {"a": {"b": 2}} Hope that helps.') == {"a": {"b": 2}}


def test_unparseable_inputs():
    assert extract_json_object("") is None
    assert extract_json_object(None) is None
    assert extract_json_object("[1, 2]") is None
    assert extract_json_object("no json here") is None
    assert extract_json_object("{ not: valid }") is None


def test_compact_json_keeps_unicode():
    assert compact_json({"title": "café", "n": 1}) == '{"title":"café","n":1}'
