import pytest

from src.llm.json_utils import parse_llm_json, clean_json_response, extract_json_block


def test_parses_plain_json():
    assert parse_llm_json('{"a": 1}') == {"a": 1}


def test_strips_markdown_fences():
    assert parse_llm_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}


def test_extracts_object_from_surrounding_prose():
    text = 'Here you go: {"finalAnswer": "R01"} Hope that helps.'
    assert parse_llm_json(text) == {"finalAnswer": "R01"}


def test_extracts_array_when_expected():
    text = 'Results:\n[{"questionId": "q1"}]\nDone.'
    assert parse_llm_json(text, expect="array") == [{"questionId": "q1"}]


def test_clean_json_response_unescapes_quotes():
    assert clean_json_response('```{\\"a\\": 1}```') == '{"a": 1}'


def test_extract_json_block_missing():
    with pytest.raises(ValueError, match="No JSON object"):
        extract_json_block("nothing here")


@pytest.mark.parametrize("text", ["", "   ", "not json at all", "{broken"])
def test_unparseable_raises_value_error(text):
    with pytest.raises(ValueError):
        parse_llm_json(text)
