import pytest

from cancercompanion.errors import MalformedPayloadError
from cancercompanion.normalizer import as_number, as_text_list, normalize, parse_json_reply, strip_code_fences
from cancercompanion.tasks import coerce_timeline, default_scan_payload, heuristic_timeline


def test_strip_code_fences_handles_language_tag():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences("```\nplain\n```") == "plain"
    assert strip_code_fences("  no fences  ") == "no fences"


def test_parse_json_reply_keeps_cleaned_text_on_failure():
    with pytest.raises(MalformedPayloadError) as excinfo:
        parse_json_reply("```json\nHello **world**\n```")
    assert excinfo.value.raw_text == "Hello **world**"


def test_fenced_free_text_lands_in_summary():
    payload = normalize("```json\nHello **world**\n```", default_scan_payload)

    assert payload["summary"] == "Hello **world**"
    assert payload["terms"] == []
    assert payload["questions"] == []
    assert payload["resources"] == []


def test_mapping_reply_is_returned_as_is():
    assert normalize('{"summary": "s", "extra": 1}', default_scan_payload) == {"summary": "s", "extra": 1}


def test_json_string_reply_goes_through_default():
    assert normalize('"just words"', default_scan_payload)["summary"] == "just words"


def test_non_mapping_json_uses_default_with_text():
    assert normalize("[1, 2]", default_scan_payload)["summary"] == "[1, 2]"


def test_coercion_helpers():
    assert as_number("21 days") == 21.0
    assert as_number(True, default=3) == 3
    assert as_text_list(["a", "", None, 2]) == ["a", "2"]
    assert as_text_list("single") == ["single"]


def test_timeline_accepts_bare_array_or_wrapped_object():
    rows = [{"day": 1, "phase": "Infusion Day", "tips": ["rest"], "sideEffects": [], "alert": None}]
    assert coerce_timeline(rows)["timeline"][0]["day"] == "1"
    assert coerce_timeline({"timeline": rows})["timeline"][0]["phase"] == "Infusion Day"
    assert coerce_timeline([]) is None
    assert coerce_timeline({"drugs": []}) is None


@pytest.mark.parametrize(
    "cycle_days, expected_days",
    [
        (21, ["1", "2-3", "4-12", "13-21"]),
        (14, ["1", "2-3", "4-9", "10-14"]),
        (5, ["1", "2-3", "4", "5"]),
        (1, ["1"]),
    ],
)
def test_heuristic_timeline_covers_cycle(cycle_days, expected_days):
    timeline = heuristic_timeline(
        {"drugs": [{"name": "Paclitaxel", "commonSideEffects": ["neuropathy"]}], "cycleDays": cycle_days}
    )
    assert [entry["day"] for entry in timeline] == expected_days


@pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
def test_non_json_constants_are_malformed(constant):
    with pytest.raises(MalformedPayloadError):
        parse_json_reply(f'{{"cycleDays": {constant}}}')


def test_as_number_rejects_non_finite_values():
    assert as_number(float("inf"), default=14) == 14
    assert as_number(float("nan")) is None
    assert as_number(10**400, default=14) == 14
    assert as_number("9" * 400, default=14) == 14
