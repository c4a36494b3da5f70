"""Tests for model output normalization."""

import json

import pytest

from brainstormer_api.normalizer import (
    InvalidResponseStructureError,
    NormalizationError,
    ResponseParseError,
    extract_json_text,
    normalize,
    processing_error_plan,
)

FIXED_NOW = 1700000000.5
STAMP = 1700000000500


def fixed_clock() -> float:
    return FIXED_NOW


WEEK_PLAN = {
    "sections": [
        {"title": "Work", "bullets": ["Finish report", "Email the draft to Sam", "Book review slot"]},
        {"title": "Personal", "bullets": ["Go to the gym on Monday", "Call mom"]},
    ]
}


class TestExtractJsonText:
    """Tests for JSON object extraction."""

    def test_plain_object(self) -> None:
        assert extract_json_text('{"a": 1}') == '{"a": 1}'

    def test_widest_span(self) -> None:
        raw = 'Here you go: {"a": {"b": 1}} and {"c": 2} done'
        assert extract_json_text(raw) == '{"a": {"b": 1}} and {"c": 2}'

    def test_code_fence(self) -> None:
        raw = '```json\n{"sections": []}\n```'
        assert extract_json_text(raw) == '{"sections": []}'

    def test_no_braces_returns_text(self) -> None:
        assert extract_json_text("no json here") == "no json here"


class TestNormalizeRoundTrip:
    """A well-formed reply keeps every title and bullet in order."""

    def test_titles_and_bullets_preserved(self) -> None:
        plan = normalize(json.dumps(WEEK_PLAN), clock=fixed_clock)

        assert [s.title for s in plan.sections] == ["Work", "Personal"]
        for section, expected in zip(plan.sections, WEEK_PLAN["sections"]):
            assert [item.text for item in section.items] == expected["bullets"]

    def test_items_not_completed(self) -> None:
        plan = normalize(json.dumps(WEEK_PLAN), clock=fixed_clock)
        assert all(not item.completed for s in plan.sections for item in s.items)

    def test_identifiers(self) -> None:
        plan = normalize(json.dumps(WEEK_PLAN), clock=fixed_clock)

        assert plan.sections[0].id == f"section-1-{STAMP}"
        assert plan.sections[1].id == f"section-2-{STAMP}"
        assert plan.sections[0].items[0].id == f"item-0-0-{STAMP}"
        assert plan.sections[1].items[1].id == f"item-1-1-{STAMP}"

    def test_identifiers_unique(self) -> None:
        plan = normalize(json.dumps(WEEK_PLAN), clock=fixed_clock)
        ids = [s.id for s in plan.sections] + [i.id for s in plan.sections for i in s.items]
        assert len(ids) == len(set(ids))

    def test_no_fallback_section_when_items_exist(self) -> None:
        plan = normalize(json.dumps(WEEK_PLAN), clock=fixed_clock)
        assert all(s.id != "fallback-1" for s in plan.sections)


class TestNormalizeResilience:
    """Replies wrapped in prose or code fences are still parsed."""

    def test_prose_wrapped(self) -> None:
        raw = f"Sure! Here is your plan:\n{json.dumps(WEEK_PLAN)}\nLet me know if you need more."
        plan = normalize(raw, clock=fixed_clock)
        assert [s.title for s in plan.sections] == ["Work", "Personal"]

    def test_code_fenced(self) -> None:
        raw = f"```json\n{json.dumps(WEEK_PLAN, indent=2)}\n```"
        plan = normalize(raw, clock=fixed_clock)
        assert len(plan.sections) == 2
        assert plan.sections[1].items[1].text == "Call mom"

    def test_missing_title_gets_positional_default(self) -> None:
        raw = json.dumps({"sections": [{"title": "A", "bullets": ["x"]}, {"bullets": ["y"]}]})
        plan = normalize(raw, clock=fixed_clock)
        assert plan.sections[1].title == "Section 2"

    @pytest.mark.parametrize("title", ["", "   ", None, 7])
    def test_blank_or_non_string_title(self, title: object) -> None:
        raw = json.dumps({"sections": [{"title": title, "bullets": ["x"]}]})
        plan = normalize(raw, clock=fixed_clock)
        assert plan.sections[0].title == "Section 1"

    def test_missing_bullets_gives_empty_section(self) -> None:
        raw = json.dumps({"sections": [{"title": "A", "bullets": ["x"]}, {"title": "B"}]})
        plan = normalize(raw, clock=fixed_clock)
        assert plan.sections[1].items == []

    def test_non_list_bullets_ignored(self) -> None:
        raw = json.dumps({"sections": [{"title": "A", "bullets": "do it"}, {"title": "B", "bullets": ["x"]}]})
        plan = normalize(raw, clock=fixed_clock)
        assert plan.sections[0].items == []
        assert plan.sections[1].items[0].text == "x"

    def test_blank_and_structured_bullets_skipped(self) -> None:
        raw = json.dumps({"sections": [{"title": "A", "bullets": ["one", "", None, {"k": 1}, 2]}]})
        plan = normalize(raw, clock=fixed_clock)
        assert [i.text for i in plan.sections[0].items] == ["one", "2"]
        assert [i.id for i in plan.sections[0].items] == [f"item-0-0-{STAMP}", f"item-0-1-{STAMP}"]

    def test_scalar_bullets_rendered_as_json(self) -> None:
        raw = json.dumps({"sections": [{"title": "A", "bullets": [True, False, 3, 2.5]}]})
        plan = normalize(raw, clock=fixed_clock)
        assert [i.text for i in plan.sections[0].items] == ["true", "false", "3", "2.5"]

    def test_non_object_section(self) -> None:
        raw = json.dumps({"sections": ["oops", {"title": "Real", "bullets": ["x"]}]})
        plan = normalize(raw, clock=fixed_clock)
        assert plan.sections[0].title == "Section 1"
        assert plan.sections[0].items == []


class TestNormalizeFallbacks:
    """Failure handling and the non-empty invariant."""

    @pytest.mark.parametrize(
        "raw",
        ["I cannot help with that.", "{not: valid json}", "{\"sections\": [", "```\n```"],
    )
    def test_unparseable_raises_with_fallback(self, raw: str) -> None:
        with pytest.raises(ResponseParseError) as exc_info:
            normalize(raw)
        fallback = exc_info.value.fallback
        assert str(exc_info.value) == "Invalid response format"
        assert len(fallback.sections) == 1
        assert len(fallback.sections[0].items) == 1
        assert fallback.sections[0].title
        assert fallback.sections[0].items[0].text

    def test_deeply_nested_reply_returns_fallback(self) -> None:
        raw = '{"sections": ' + "[" * 100_000 + "]" * 100_000 + "}"
        with pytest.raises(ResponseParseError) as exc_info:
            normalize(raw)
        assert exc_info.value.fallback == processing_error_plan()

    def test_fallback_is_deterministic(self) -> None:
        assert processing_error_plan() == processing_error_plan()
        plan = processing_error_plan()
        assert plan.sections[0].id == "error-1"
        assert plan.sections[0].title == "Processing Error"
        assert plan.sections[0].items[0].id == "error-item-1"

    @pytest.mark.parametrize(
        "payload",
        [{}, {"sections": None}, {"sections": "Work"}, {"sections": {"title": "A"}}, {"items": []}],
    )
    def test_missing_sections_is_structural_error(self, payload: dict) -> None:
        with pytest.raises(InvalidResponseStructureError):
            normalize(json.dumps(payload))

    def test_top_level_array_is_structural_error(self) -> None:
        # No braces around the array, so the whole text is parsed as a list.
        with pytest.raises(InvalidResponseStructureError):
            normalize('["Work", "Personal"]')

    def test_structural_error_is_not_parse_error(self) -> None:
        with pytest.raises(NormalizationError) as exc_info:
            normalize(json.dumps({"plan": []}))
        assert not isinstance(exc_info.value, ResponseParseError)

    def test_empty_sections_list_gets_fallback(self) -> None:
        plan = normalize(json.dumps({"sections": []}), clock=fixed_clock)
        assert len(plan.sections) == 1
        assert plan.sections[0].id == "fallback-1"
        assert plan.sections[0].title == "Action Items"
        assert plan.sections[0].items[0].id == "fallback-item-1"
        assert plan.sections[0].items[0].text == "Review and organize the input"

    def test_all_sections_empty_gets_fallback_appended(self) -> None:
        raw = json.dumps({"sections": [{"title": "A", "bullets": []}, {"title": "B"}]})
        plan = normalize(raw, clock=fixed_clock)
        assert [s.title for s in plan.sections] == ["A", "B", "Action Items"]
        assert plan.has_items()

    @pytest.mark.parametrize(
        "raw",
        [
            json.dumps(WEEK_PLAN),
            json.dumps({"sections": []}),
            json.dumps({"sections": [{"title": "only"}]}),
            json.dumps({"sections": [{}, {}, {"bullets": [None]}]}),
        ],
    )
    def test_plan_invariant(self, raw: str) -> None:
        plan = normalize(raw)
        assert len(plan.sections) >= 1
        assert any(len(s.items) >= 1 for s in plan.sections)
