"""Tests for tolerant JSON handling."""

import pytest

from ai_assistant.ai.json_utils import (
    extract_json_string,
    parse_json_object,
    repair_and_load,
    strip_line_breaks,
)
from ai_assistant.errors import ParseError


class TestExtractJsonString:
    def test_strips_surrounding_prose(self):
        text = 'Sure! Here you go: {"userResponse": "hi"} Anything else?'
        assert extract_json_string(text) == '{"userResponse": "hi"}'

    def test_keeps_nested_objects(self):
        text = '```json\n{"a": {"b": 1}}\n```'
        assert extract_json_string(text) == '{"a": {"b": 1}}'

    @pytest.mark.parametrize("text", [None, "", "no json here", "} backwards {"])
    def test_returns_none_without_object(self, text):
        assert extract_json_string(text) is None


class TestRepair:
    def test_trailing_comma(self):
        assert repair_and_load('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}

    def test_unquoted_keys(self):
        assert repair_and_load("{userResponse: 'hello'}") == {"userResponse": "hello"}

    def test_empty_payload_raises(self):
        with pytest.raises(ParseError):
            repair_and_load("   ")

    def test_parse_json_object_rejects_non_objects(self):
        with pytest.raises(ParseError):
            parse_json_object("[1, 2, 3]")

    def test_parse_error_keeps_raw_text(self):
        with pytest.raises(ParseError) as exc_info:
            parse_json_object("[1]")
        assert exc_info.value.raw == "[1]"


def test_strip_line_breaks():
    assert strip_line_breaks('{\n\t"a": 1\r\n}') == '{"a": 1}'
