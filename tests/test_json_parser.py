"""Tests for JSON recovery from model output."""

import pytest

from cv_tailor.errors import ParseError
from cv_tailor.utils.json_parser import (
    extract_json,
    normalize,
    repair_control_characters,
    strip_code_fences,
)


class TestNormalize:
    def test_direct_json(self):
        assert normalize('{"name": "test"}') == {"name": "test"}

    def test_prose_around_object(self):
        text = 'Sure! Here is the JSON you asked for: {"a": 1} Let me know if you need more.'
        assert normalize(text) == {"a": 1}

    def test_fenced_code_block(self):
        text = '```json\n{"professional_summary": {"description": "x"}}\n```'
        assert normalize(text) == {"professional_summary": {"description": "x"}}

    def test_fenced_without_language_tag(self):
        assert normalize('```\n{"key": "value"}\n```') == {"key": "value"}

    @pytest.mark.parametrize("raw, escaped", [("\n", "\\n"), ("\r", "\\r"), ("\t", "\\t")])
    def test_raw_control_characters_inside_strings(self, raw, escaped):
        broken = '{"description": "line one' + raw + 'line two"}'
        clean = '{"description": "line one' + escaped + 'line two"}'
        assert normalize(broken) == normalize(clean)
        assert normalize(broken)["description"] == "line one" + raw + "line two"

    def test_newlines_between_tokens_are_kept(self):
        text = '{\n  "a": "x\ny",\n  "b": 2\n}'
        assert normalize(text) == {"a": "x\ny", "b": 2}

    def test_trailing_commas(self):
        assert normalize('{"skills": ["a", "b",], "n": 1,}') == {"skills": ["a", "b"], "n": 1}

    def test_nested_json(self):
        result = normalize('{"outer": {"inner": [1, 2, 3]}}')
        assert result["outer"]["inner"] == [1, 2, 3]

    def test_no_object_raises(self):
        with pytest.raises(ParseError, match="No JSON object"):
            normalize("I'm sorry, I can't help with that.")

    def test_empty_string_raises(self):
        with pytest.raises(ParseError):
            normalize("")

    def test_unrecoverable_json_raises(self):
        with pytest.raises(ParseError, match="valid JSON"):
            normalize('{"a": [1, 2}')

    def test_error_excerpt_is_bounded(self):
        text = "{" + "x" * 5000 + "}"
        with pytest.raises(ParseError) as exc_info:
            normalize(text)
        assert len(exc_info.value.excerpt) <= 203
        assert exc_info.value.to_dict()["error_kind"] == "ParseError"


class TestExtractJson:
    def test_top_level_array(self):
        assert extract_json('["Python", "SQL"]') == ["Python", "SQL"]

    def test_array_inside_prose(self):
        assert extract_json('Keywords:\n["Python", "SQL",]\nThanks') == ["Python", "SQL"]

    def test_object_falls_back_to_normalize(self):
        assert extract_json('Result: {"keywords": ["a"]}') == {"keywords": ["a"]}


class TestHelpers:
    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_control_characters_outside_strings_untouched(self):
        text = '{\n"a": "b\tc"\n}'
        assert repair_control_characters(text) == '{\n"a": "b\\tc"\n}'

    def test_escaped_quote_does_not_end_string(self):
        text = '{"a": "say \\"hi\\"\nnow"}'
        assert repair_control_characters(text) == '{"a": "say \\"hi\\"\\nnow"}'
