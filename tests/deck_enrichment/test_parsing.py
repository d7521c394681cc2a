from types import SimpleNamespace

import pytest

from src.functions.deck_enrichment.core.contracts import GroundingSource
from src.functions.deck_enrichment.core.parsing import (
    extract_grounding_sources,
    normalise_content,
    parse_model_json,
)


def test_fenced_json_is_unwrapped():
    assert parse_model_json('```json\n{"a":1}\n```') == {"a": 1}


def test_bare_fence_is_unwrapped():
    assert parse_model_json('```\n{"a": "b"}\n```') == {"a": "b"}


def test_trailing_comma_is_removed():
    assert parse_model_json('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}


def test_unbalanced_braces_are_closed():
    assert parse_model_json('{"a":{"b":1}') == {"a": {"b": 1}}


def test_citation_markers_between_tokens_are_stripped():
    text = '{"actionTitle": "Revenue doubled" [1], "keywords": ["growth"] [2][3]}'

    assert parse_model_json(text) == {"actionTitle": "Revenue doubled", "keywords": ["growth"]}


def test_prose_around_object_is_dropped():
    text = 'Here is the analysis you asked for:\n{"subtitle": "Q3"}\nLet me know if you need more.'

    assert parse_model_json(text) == {"subtitle": "Q3"}


def test_truncated_array_and_string_are_closed():
    assert parse_model_json('{"keyTakeaways": ["one", "tw') == {"keyTakeaways": ["one", "tw"]}


def test_truncated_fence_without_closing_marker():
    assert parse_model_json('```json\n{"script": "Hello"}') == {"script": "Hello"}


def test_valid_json_keeps_bracketed_numbers_inside_strings():
    assert parse_model_json('{"script": "See note [1]"}') == {"script": "See note [1]"}


@pytest.mark.parametrize("text", [None, "", "   ", "not json at all", "[1, 2, 3]", "{{{{", '"just a string"'])
def test_garbage_returns_empty_record(text):
    assert parse_model_json(text) == {}


def test_normalise_content_defaults_list_fields():
    content = normalise_content(
        {"actionTitle": "Title", "keyTakeaways": "not a list", "keywords": None},
        default_layout="strategic-pillars",
    )

    assert content.action_title == "Title"
    assert content.key_takeaways == []
    assert content.asset_prompts == []
    assert content.keywords == []
    assert content.color_palette == []
    assert content.consulting_layout == "strategic-pillars"


def test_normalise_content_keeps_model_layout_and_unknown_keys():
    content = normalise_content({"consultingLayout": "mckinsey-insight", "chartType": "bar"})

    assert content.consulting_layout == "mckinsey-insight"
    assert content.extras == {"chartType": "bar"}
    assert content.to_dict()["chartType"] == "bar"


def test_extract_grounding_sources_reads_web_chunks():
    response = SimpleNamespace(
        candidates=[
            SimpleNamespace(
                grounding_metadata=SimpleNamespace(
                    grounding_chunks=[
                        SimpleNamespace(web=SimpleNamespace(title="Report", uri="https://example.com/r")),
                        SimpleNamespace(web=None),
                    ]
                )
            )
        ]
    )

    assert extract_grounding_sources(response) == [
        GroundingSource(title="Report", uri="https://example.com/r")
    ]


def test_extract_grounding_sources_without_metadata():
    assert extract_grounding_sources(SimpleNamespace(candidates=[])) == []
    assert extract_grounding_sources(SimpleNamespace(candidates=[SimpleNamespace(grounding_metadata=None)])) == []
